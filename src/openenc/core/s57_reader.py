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
s57_reader.py

Thin layer over the GDAL/OGR S57 driver: driver configuration, chart
discovery on disk, and the DSID / M_COVR pseudo-layers that carry chart
metadata and coverage.

A dataset returned by open_chart() must stay on the thread that opened it.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Union

from shapely.geometry import MultiPolygon, Polygon, mapping, shape
from shapely.ops import unary_union
from shapely.validation import make_valid

from .feature_extract import coerce_int, feature_geometry_geojson, field_value

logger = logging.getLogger(__name__)

S57_OPEN_OPTIONS = [
    'RETURN_PRIMITIVES=OFF',
    'RETURN_LINKAGES=OFF',
    'LNAM_REFS=ON',
    'UPDATES=APPLY',          # .001, .002 ... are merged into the base cell
    'SPLIT_MULTIPOINT=ON',    # one SOUNDG feature per sounding
    'RECODE_BY_DSSI=ON',
    'ADD_SOUNDG_DEPTH=ON',    # DEPTH field from the Z ordinate
]

S57_BASE_SUFFIX = '.000'
COVERAGE_LAYER = 'M_COVR'
METADATA_LAYER = 'DSID'
CATCOV_COVERAGE_AVAILABLE = 1

_gdal_configured = False


@dataclass(frozen=True)
class ChartMetadata:
    """Edition, update number and compilation scale of one chart cell."""
    edition: Optional[int] = None
    update_number: int = 0
    compilation_scale: int = 0


def configure_gdal():
    """Sets the S57 driver options once per process."""
    global _gdal_configured
    if _gdal_configured:
        return

    from osgeo import gdal, ogr

    gdal.UseExceptions()
    ogr.UseExceptions()
    gdal.SetConfigOption('OGR_S57_OPTIONS', ','.join(S57_OPEN_OPTIONS))
    # S-57 rings follow the standard orientation, skip the slow polygon organisation
    gdal.SetConfigOption('OGR_ORGANIZE_POLYGONS', 'ONLY_CCW')
    _gdal_configured = True
    logger.debug(f"GDAL {gdal.__version__} configured for S-57 import")


def open_chart(s57_file: Union[str, Path]):
    """Opens an S-57 base file with the S57 driver. Raises IOError on failure."""
    from osgeo import gdal

    configure_gdal()
    s57_file = Path(s57_file)
    try:
        dataset = gdal.OpenEx(str(s57_file), gdal.OF_VECTOR,
                              allowed_drivers=['S57'],
                              open_options=S57_OPEN_OPTIONS)
    except RuntimeError as e:
        raise IOError(f"Could not open {s57_file.name}: {e}") from e
    if not dataset:
        raise IOError(f"Could not open {s57_file.name}")
    return dataset


# ==============================================================================
# DISCOVERY
# ==============================================================================

def find_enc_directories(input_dir: Union[str, Path]) -> List[Path]:
    """Returns the chart-cell directories directly under the input root."""
    input_dir = Path(input_dir)
    try:
        dirs = sorted(p for p in input_dir.iterdir() if p.is_dir())
    except OSError as e:
        logger.error(f"Failed to read input directory {input_dir}: {e}")
        return []
    return dirs


def find_s57_files(enc_dir: Union[str, Path]) -> List[Path]:
    """
    Finds the S-57 base files (.000) in one ENC directory.
    Update files are applied by the driver and are not listed.
    """
    enc_dir = Path(enc_dir)
    try:
        files = sorted(p for p in enc_dir.iterdir()
                       if p.is_file() and p.suffix.lower() == S57_BASE_SUFFIX)
    except OSError as e:
        logger.error(f"Failed to read directory {enc_dir}: {e}")
        return []
    return files


def enc_name_from_path(s57_file: Union[str, Path]) -> str:
    """'US5FL10M/US5FL10M.000' -> 'US5FL10M'."""
    name = os.path.basename(str(s57_file))
    stem = name.split('.')[0]
    return stem or 'unknown'


# ==============================================================================
# DATASET ACCESS
# ==============================================================================

def iter_layer_features(dataset, s57_name: str) -> Iterator:
    """Yields the features of every layer named `s57_name` (case-insensitive) in read order."""
    wanted = s57_name.upper()
    for i in range(dataset.GetLayerCount()):
        layer = dataset.GetLayerByIndex(i)
        if layer is None or layer.GetName().upper() != wanted:
            continue
        layer.ResetReading()
        feature = layer.GetNextFeature()
        while feature is not None:
            yield feature
            feature = layer.GetNextFeature()


def extract_metadata(dataset) -> ChartMetadata:
    """Reads edition, update number and compilation scale from the DSID record."""
    for feature in iter_layer_features(dataset, METADATA_LAYER):
        return ChartMetadata(
            edition=coerce_int(field_value(feature, 'DSID_EDTN')),
            update_number=coerce_int(field_value(feature, 'DSID_UPDN')) or 0,
            compilation_scale=coerce_int(field_value(feature, 'DSPM_CSCL')) or 0,
        )
    logger.warning("DSID record not found, chart metadata unknown")
    return ChartMetadata()


def extract_coverage_geojson(dataset) -> Optional[str]:
    """
    Builds the chart coverage from M_COVR features with CATCOV=1.

    Returns a GeoJSON Polygon or MultiPolygon, or None when the chart has no
    usable coverage feature.
    """
    polygons = []
    for feature in iter_layer_features(dataset, COVERAGE_LAYER):
        if coerce_int(field_value(feature, 'CATCOV')) != CATCOV_COVERAGE_AVAILABLE:
            continue
        try:
            geojson = feature_geometry_geojson(feature)
        except Exception as e:
            logger.warning(f"Failed to read {COVERAGE_LAYER} geometry: {e}")
            continue
        if geojson is None:
            logger.debug(f"{COVERAGE_LAYER} feature has no geometry")
            continue
        try:
            geom = shape(json.loads(geojson))
            if not geom.is_valid:
                geom = make_valid(geom)
        except Exception as e:
            logger.warning(f"Skipping malformed {COVERAGE_LAYER} geometry: {e}")
            continue
        polygons.extend(_polygon_parts(geom))

    if not polygons:
        return None

    merged = unary_union(polygons)
    parts = _polygon_parts(merged)
    if not parts:
        return None
    coverage = parts[0] if len(parts) == 1 else MultiPolygon(parts)
    return json.dumps(mapping(coverage))


def _polygon_parts(geom) -> List[Polygon]:
    if geom.is_empty:
        return []
    if isinstance(geom, Polygon):
        return [geom]
    if isinstance(geom, MultiPolygon):
        return list(geom.geoms)
    if hasattr(geom, 'geoms'):
        parts = []
        for sub in geom.geoms:
            parts.extend(_polygon_parts(sub))
        return parts
    return []
