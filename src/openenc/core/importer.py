#!/usr/bin/env python3
# Copyright (C) 2024-2025 Viktor Kolbasov <contact@studentdotai.com>
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""
importer.py

Multi-chart import orchestration.

Every chart goes through the same sequence on one worker thread:
open -> read DSID -> skip check -> read M_COVR -> one transaction
(catalog row, then every registered layer) -> commit -> coverage fallback.

Charts run in parallel on a ThreadPoolExecutor sized below the connection
pool, and a failure is contained at the narrowest scope possible: a feature
(savepoint), a layer, a chart. Nothing short of a start-up error stops the run.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import pandas as pd
from sqlalchemy.engine import Engine
from tqdm import tqdm

from .layer_schema import LayerDefinition, min_zoom_for_scale
from .layers import all_layers
from .persistence import (
    ChartContext,
    compute_coverage_fallback,
    is_already_imported,
    process_layer,
    upsert_catalog,
)
from .s57_reader import (
    ChartMetadata,
    enc_name_from_path,
    extract_coverage_geojson,
    extract_metadata,
    find_enc_directories,
    find_s57_files,
    open_chart,
)

logger = logging.getLogger(__name__)

STATUS_IMPORTED = 'imported'
STATUS_SKIPPED = 'skipped'
STATUS_FAILED = 'failed'


@dataclass
class ChartImportResult:
    """Outcome of one chart cell."""
    enc_name: str
    status: str = STATUS_IMPORTED
    features: int = 0
    skipped_features: int = 0
    errors: int = 0
    layer_counts: Dict[str, int] = field(default_factory=dict)
    metadata: Optional[ChartMetadata] = None
    coverage_source: Optional[str] = None
    message: Optional[str] = None
    duration: float = 0.0

    @property
    def failed(self) -> bool:
        return self.status == STATUS_FAILED

    @classmethod
    def failure(cls, enc_name: str, message: str) -> 'ChartImportResult':
        return cls(enc_name=enc_name, status=STATUS_FAILED, message=message)


@dataclass
class ImportSummary:
    """Aggregate of a whole run."""
    results: List[ChartImportResult] = field(default_factory=list)
    duration: float = 0.0

    def _count(self, status: str) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def imported(self) -> int:
        return self._count(STATUS_IMPORTED)

    @property
    def skipped(self) -> int:
        return self._count(STATUS_SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(STATUS_FAILED)

    @property
    def total_features(self) -> int:
        return sum(r.features for r in self.results)

    @property
    def total_errors(self) -> int:
        return sum(r.errors for r in self.results)

    def to_dataframe(self) -> pd.DataFrame:
        rows = []
        for r in self.results:
            rows.append({
                'enc_name': r.enc_name,
                'status': r.status,
                'edition': r.metadata.edition if r.metadata else None,
                'update_number': r.metadata.update_number if r.metadata else None,
                'compilation_scale': r.metadata.compilation_scale if r.metadata else None,
                'features': r.features,
                'skipped_features': r.skipped_features,
                'errors': r.errors,
                'coverage': r.coverage_source,
                'duration_sec': round(r.duration, 2),
                'message': r.message,
            })
        return pd.DataFrame(rows)


class ChartImporter:
    """
    Imports every chart cell found under `settings.input_dir` into PostGIS.

    Args:
        engine: SQLAlchemy engine whose pool is shared by all workers.
        settings: ImportSettings (input_dir, parallel_enc, force_reimport, prune_superseded).
        layers: Layer definitions to import, in order. Defaults to the full registry.
        show_progress: Show a tqdm progress bar in run().
    """

    def __init__(self, engine: Engine, settings, layers: Optional[Sequence[LayerDefinition]] = None,
                 show_progress: bool = True):
        self.engine = engine
        self.settings = settings
        self.layers = list(layers) if layers is not None else all_layers()
        self.show_progress = show_progress

    def discover(self) -> List[Path]:
        """Chart-cell directories under the input root."""
        input_dir = Path(self.settings.input_dir)
        if not input_dir.is_dir():
            raise FileNotFoundError(f"Input directory not found: {input_dir}")
        enc_dirs = find_enc_directories(input_dir)
        logger.info(f"Found {len(enc_dirs)} ENC directories in {input_dir}")
        return enc_dirs

    def run(self) -> ImportSummary:
        """Imports all discovered charts with at most `parallel_enc` in flight."""
        enc_dirs = self.discover()
        summary = ImportSummary()
        if not enc_dirs:
            logger.warning("Nothing to import")
            return summary

        start_time = time.perf_counter()
        logger.info(f"Importing {len(enc_dirs)} ENC directories with {self.settings.parallel_enc} workers "
                    f"({', '.join(l.s57_name for l in self.layers)})")

        with ThreadPoolExecutor(max_workers=self.settings.parallel_enc, thread_name_prefix='enc') as executor:
            future_to_dir = {executor.submit(self.process_enc_directory, enc_dir): enc_dir
                             for enc_dir in enc_dirs}
            with tqdm(total=len(future_to_dir), desc='Importing ENCs', unit='enc',
                      disable=not self.show_progress) as progress:
                for future in as_completed(future_to_dir):
                    enc_dir = future_to_dir[future]
                    try:
                        summary.results.extend(future.result())
                    except Exception as exc:
                        logger.error(f"ENC directory {enc_dir.name} failed: {exc}")
                        summary.results.append(ChartImportResult.failure(enc_dir.name, str(exc)))
                    progress.update(1)

        summary.results.sort(key=lambda r: r.enc_name)
        summary.duration = time.perf_counter() - start_time
        logger.info(f"Import finished in {summary.duration:.2f}s: {summary.imported} imported, "
                    f"{summary.skipped} skipped, {summary.failed} failed, "
                    f"{summary.total_features} features, {summary.total_errors} errors")
        return summary

    def process_enc_directory(self, enc_dir: Union[str, Path]) -> List[ChartImportResult]:
        """Imports the base file(s) of one ENC directory."""
        enc_dir = Path(enc_dir)
        if not enc_dir.is_dir():
            logger.error(f"ENC directory not found: {enc_dir}")
            return [ChartImportResult.failure(enc_dir.name, 'directory not found')]

        s57_files = find_s57_files(enc_dir)
        if not s57_files:
            logger.warning(f"No S-57 base file (*.000) in {enc_dir}")
            return [ChartImportResult.failure(enc_dir.name, 'no S-57 base file')]

        return [self.process_s57_file(s57_file) for s57_file in s57_files]

    def process_s57_file(self, s57_file: Union[str, Path]) -> ChartImportResult:
        """Imports one chart cell. Never raises; failures come back as a failed result."""
        s57_file = Path(s57_file)
        enc_name = enc_name_from_path(s57_file)
        start_time = time.perf_counter()

        try:
            dataset = open_chart(s57_file)
        except IOError as e:
            logger.error(f"{enc_name}: {e}")
            return ChartImportResult.failure(enc_name, str(e))

        try:
            result = self._import_dataset(enc_name, dataset)
        except Exception as e:
            logger.error(f"{enc_name}: import failed, transaction rolled back: {type(e).__name__}: {e}")
            result = ChartImportResult.failure(enc_name, str(e))
        finally:
            dataset = None  # release the GDAL handle on this thread

        result.duration = time.perf_counter() - start_time
        return result

    def _import_dataset(self, enc_name: str, dataset) -> ChartImportResult:
        metadata = extract_metadata(dataset)

        if not self.settings.force_reimport and self._already_imported(enc_name, metadata):
            logger.info(f"{enc_name}: edition {metadata.edition} update {metadata.update_number} "
                        f"already imported, skipping")
            return ChartImportResult(enc_name, STATUS_SKIPPED, metadata=metadata)

        coverage = self._read_coverage(enc_name, dataset)
        ctx = ChartContext(enc_name=enc_name, metadata=metadata)
        result = ChartImportResult(enc_name, STATUS_IMPORTED, metadata=metadata,
                                   coverage_source='M_COVR' if coverage else None)

        with self.engine.begin() as conn:
            # A failing catalog upsert aborts the whole chart
            upsert_catalog(conn, enc_name, metadata, coverage)

            for layer in self.layers:
                try:
                    layer_result = process_layer(conn, layer, dataset, ctx,
                                                 prune_superseded=self.settings.prune_superseded)
                except Exception as e:
                    logger.error(f"{enc_name}: layer {layer.s57_name} failed: {type(e).__name__}: {e}")
                    result.errors += 1
                    continue
                result.features += layer_result.inserted
                result.skipped_features += layer_result.skipped
                result.errors += layer_result.errors
                result.layer_counts[layer.s57_name] = layer_result.inserted
                logger.info(f"{enc_name}: {layer.s57_name} {layer_result.inserted} inserted, "
                            f"{layer_result.skipped} skipped, {layer_result.errors} errors")

        if coverage is None and result.features > 0:
            self._apply_coverage_fallback(enc_name, result)

        if result.features == 0 and result.errors > 0:
            result.status = STATUS_FAILED
            result.message = f"no features imported, {result.errors} errors"

        logger.info(f"{enc_name}: {result.features} features imported, {result.errors} errors "
                    f"(edition {metadata.edition}, update {metadata.update_number}, "
                    f"scale 1:{metadata.compilation_scale}, "
                    f"min zoom {min_zoom_for_scale(metadata.compilation_scale)})")
        return result

    def _already_imported(self, enc_name: str, metadata: ChartMetadata) -> bool:
        try:
            return is_already_imported(self.engine, enc_name, metadata.edition, metadata.update_number)
        except Exception as e:
            # A failed check must not block the import
            logger.warning(f"{enc_name}: could not check import status, importing anyway: {e}")
            return False

    def _read_coverage(self, enc_name: str, dataset) -> Optional[str]:
        try:
            coverage = extract_coverage_geojson(dataset)
        except Exception as e:
            logger.warning(f"{enc_name}: could not build M_COVR coverage: {e}")
            return None
        if coverage is None:
            logger.debug(f"{enc_name}: no M_COVR coverage, fallback will be computed after import")
        return coverage

    def _apply_coverage_fallback(self, enc_name: str, result: ChartImportResult):
        try:
            if compute_coverage_fallback(self.engine, enc_name, self.layers):
                result.coverage_source = 'convex_hull'
                logger.debug(f"{enc_name}: coverage set from convex hull of imported features")
        except Exception as e:
            logger.warning(f"{enc_name}: coverage fallback failed: {e}")
