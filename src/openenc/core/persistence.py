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
persistence.py

Writes chart features and the chart catalog to PostGIS.

Functions taking a `conn` run inside the caller's transaction and never
commit; functions taking an `engine` open their own short transaction.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from geoalchemy2 import Geometry
from sqlalchemy import Column, Index, Integer, MetaData, Table, Text, func as sql_func, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from .feature_extract import (
    CommonAttributes,
    extract_common,
    extract_values,
    feature_geometry_geojson,
    feature_id,
)
from .layer_schema import SRID, LayerDefinition, StyleProperties
from .s57_reader import ChartMetadata, iter_layer_features

logger = logging.getLogger(__name__)

CATALOG_TABLE = 'enc_catalog'

catalog_metadata = MetaData()

ENC_CATALOG = Table(
    CATALOG_TABLE,
    catalog_metadata,
    Column('enc_name', Text, primary_key=True),
    Column('compilation_scale', Integer, nullable=False),
    Column('edition', Integer),
    Column('update_number', Integer),
    Column('coverage', Geometry('GEOMETRY', srid=SRID, spatial_index=True), nullable=False),
    Index('enc_catalog_scale_idx', 'compilation_scale'),
)

# Degenerate point written while a chart still has no coverage polygon
COVERAGE_SENTINEL_SQL = f"ST_SetSRID(ST_MakePoint(0, 0), {SRID})"


def coverage_sentinel():
    return sql_func.ST_SetSRID(sql_func.ST_MakePoint(0, 0), SRID)


@dataclass(frozen=True)
class ChartContext:
    """Identity of the chart whose features are being written."""
    enc_name: str
    metadata: ChartMetadata


@dataclass
class LayerResult:
    inserted: int = 0
    skipped: int = 0
    errors: int = 0


# ==============================================================================
# FEATURES
# ==============================================================================

def build_upsert_params(layer: LayerDefinition, ctx: ChartContext, fid: int, common: CommonAttributes,
                        column_values: Dict[str, Any], style: StyleProperties,
                        geometry: Optional[str]) -> Dict[str, Any]:
    """Parameters for LayerDefinition.build_upsert_sql(), keyed and ordered by insert_columns()."""
    attributes = json.dumps(common.other_attributes, default=str) if common.other_attributes else None
    values = {
        'enc_name': ctx.enc_name,
        'feature_fid': fid,
        'edition': ctx.metadata.edition,
        'update_number': ctx.metadata.update_number,
        'compilation_scale': ctx.metadata.compilation_scale,
        'scamin': common.scamin,
        'objl': common.objl,
        'ac': style.ac,
        'lc': style.lc,
        'sy': style.sy,
        'sordat': common.sordat,
        'sorind': common.sorind,
        'attributes': attributes,
        'geom': geometry,
    }
    for col in layer.layer_columns:
        values[col] = column_values.get(col)
    return {col: values[col] for col in layer.insert_columns()}


def upsert_feature(conn: Connection, sql: str, layer: LayerDefinition, ctx: ChartContext, fid: int,
                   common: CommonAttributes, column_values: Dict[str, Any], style: StyleProperties,
                   geometry: Optional[str]):
    """Inserts or updates one feature row inside the caller's transaction."""
    params = build_upsert_params(layer, ctx, fid, common, column_values, style, geometry)
    conn.execute(text(sql), params)


def prune_superseded_features(conn: Connection, layer: LayerDefinition, ctx: ChartContext) -> int:
    """Deletes this chart's rows that belong to any other edition/update."""
    result = conn.execute(
        text(f"DELETE FROM {layer.table} WHERE enc_name = :enc_name "
             f"AND (edition IS DISTINCT FROM :edition OR update_number IS DISTINCT FROM :update_number)"),
        {
            'enc_name': ctx.enc_name,
            'edition': ctx.metadata.edition,
            'update_number': ctx.metadata.update_number,
        },
    )
    return result.rowcount or 0


def process_layer(conn: Connection, layer: LayerDefinition, dataset, ctx: ChartContext,
                  prune_superseded: bool = False) -> LayerResult:
    """
    Upserts every feature of one S-57 layer from the dataset.

    Each upsert runs in its own SAVEPOINT, so a failed statement rolls back
    only that feature and the chart transaction stays usable.
    """
    result = LayerResult()
    sql = layer.build_upsert_sql()

    if prune_superseded:
        with conn.begin_nested():
            removed = prune_superseded_features(conn, layer, ctx)
        if removed:
            logger.info(f"{layer.s57_name}: removed {removed} superseded features for {ctx.enc_name}")

    for feature in iter_layer_features(dataset, layer.s57_name):
        fid = feature_id(feature)

        try:
            geometry = feature_geometry_geojson(feature)
        except Exception as e:
            logger.warning(f"Failed to convert geometry for {layer.s57_name} feature {fid}: {e}")
            result.errors += 1
            continue

        if geometry is None:
            logger.debug(f"{layer.s57_name} feature {fid} has no geometry, skipping")
            result.skipped += 1
            continue

        common, typed = extract_common(feature, layer.s57_fields)
        column_values = extract_values(layer, typed)
        style = layer.style_for(typed)

        try:
            with conn.begin_nested():
                upsert_feature(conn, sql, layer, ctx, fid, common, column_values, style, geometry)
            result.inserted += 1
        except SQLAlchemyError as e:
            logger.error(f"Failed to upsert {layer.s57_name} feature {fid} for {ctx.enc_name}: {e}")
            result.errors += 1

    if result.errors:
        logger.warning(f"{layer.s57_name}: {result.inserted} features inserted, {result.errors} errors")

    return result


# ==============================================================================
# CATALOG
# ==============================================================================

def upsert_catalog(conn: Connection, enc_name: str, metadata: ChartMetadata, coverage_geojson: Optional[str]):
    """
    Inserts or updates the catalog row of a chart inside the caller's transaction.

    Without a coverage polygon the sentinel point is written, which marks the
    row for compute_coverage_fallback().
    """
    if coverage_geojson:
        coverage = sql_func.ST_SetSRID(sql_func.ST_GeomFromGeoJSON(coverage_geojson), SRID)
    else:
        coverage = coverage_sentinel()

    stmt = pg_insert(ENC_CATALOG).values(
        enc_name=enc_name,
        compilation_scale=metadata.compilation_scale,
        edition=metadata.edition,
        update_number=metadata.update_number,
        coverage=coverage,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[ENC_CATALOG.c.enc_name],
        set_={
            'compilation_scale': stmt.excluded.compilation_scale,
            'edition': stmt.excluded.edition,
            'update_number': stmt.excluded.update_number,
            'coverage': stmt.excluded.coverage,
        },
    )
    conn.execute(stmt)


def is_already_imported(engine: Engine, enc_name: str, edition: Optional[int], update_number: int) -> bool:
    """True only if the catalog holds this chart with exactly this edition and update."""
    stmt = (
        select(sql_func.count())
        .select_from(ENC_CATALOG)
        .where(
            ENC_CATALOG.c.enc_name == enc_name,
            ENC_CATALOG.c.edition.is_not_distinct_from(edition),
            ENC_CATALOG.c.update_number == update_number,
        )
    )
    with engine.connect() as conn:
        return conn.execute(stmt).scalar_one() > 0


def build_coverage_fallback_sql(layers: Sequence[LayerDefinition]) -> str:
    """UPDATE setting a chart's coverage to the convex hull of its features in every layer table."""
    if not layers:
        raise ValueError("At least one layer definition is required for the coverage fallback.")
    union = "\n            UNION ALL ".join(
        f"SELECT geom FROM {layer.table} WHERE enc_name = :enc_name" for layer in layers
    )
    return f"""UPDATE {CATALOG_TABLE} SET coverage = hull.geom
FROM (
    SELECT ST_ConvexHull(ST_Collect(f.geom)) AS geom
    FROM (
            {union}
    ) AS f
) AS hull
WHERE {CATALOG_TABLE}.enc_name = :enc_name
  AND hull.geom IS NOT NULL
  AND ST_Equals({CATALOG_TABLE}.coverage, {COVERAGE_SENTINEL_SQL})"""


def compute_coverage_fallback(engine: Engine, enc_name: str, layers: Sequence[LayerDefinition]) -> bool:
    """
    Replaces a sentinel coverage with the convex hull of the chart's features.
    Rows that already hold a real coverage are left alone.

    Returns:
        bool: True if the catalog row was updated.
    """
    sql = build_coverage_fallback_sql(layers)
    with engine.begin() as conn:
        result = conn.execute(text(sql), {'enc_name': enc_name})
    return bool(result.rowcount)
