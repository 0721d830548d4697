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
layer_schema.py

Declarative schema definitions for S-57 feature layers.

A LayerDefinition is everything needed to store one S-57 object class in
PostGIS: the table name, the typed columns pulled from the feature, a style
function and the rendering-layer descriptors. All SQL (table DDL, indexes,
vector-tile functions and the upsert statement) is generated from that single
definition so the column layout can never drift between DDL and DML.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

SRID = 4326

# Conflict key shared by every feature table
CONFLICT_KEY: Tuple[str, ...] = ('enc_name', 'edition', 'update_number', 'feature_fid')

LEADING_COMMON_COLUMNS: Tuple[str, ...] = (
    'enc_name', 'feature_fid', 'edition', 'update_number',
    'compilation_scale', 'scamin', 'objl',
)
TRAILING_COMMON_COLUMNS: Tuple[str, ...] = ('ac', 'lc', 'sy', 'sordat', 'sorind', 'attributes', 'geom')

# Zoom at which a scale denominator of 1 would become visible (Web Mercator, 256px tiles)
ZOOM_SCALE_BASE = 28


class ColType(Enum):
    """Scalar kind of a layer-specific column."""
    FLOAT = 'NUMERIC'
    INT = 'INTEGER'
    TEXT = 'TEXT'

    @property
    def sql_type(self) -> str:
        return self.value


class StyleLayerType(Enum):
    FILL = 'fill'
    LINE = 'line'
    ICON = 'icon'
    TEXT = 'text'


@dataclass(frozen=True)
class ColumnDefinition:
    """Maps one S-57 attribute (e.g. 'DRVAL1') onto a typed SQL column."""
    s57_field: str
    sql_column: str
    col_type: ColType


@dataclass(frozen=True)
class StyleProperties:
    """Style tokens stored with each feature: area colour, line colour, point symbol."""
    ac: Optional[str] = None
    lc: Optional[str] = None
    sy: Optional[str] = None


@dataclass(frozen=True)
class StyleLayerDefinition:
    """Describes one map rendering layer drawn from a feature table."""
    id_suffix: str
    layer_type: StyleLayerType
    colors: Tuple[str, ...] = ()
    line_width: Optional[float] = None
    text_field: Optional[str] = None
    text_size: Optional[float] = None
    text_halo_width: Optional[float] = None
    text_halo_color: Optional[str] = None
    text_anchor: Optional[str] = None
    text_offset: Optional[Tuple[float, float]] = None
    area_color_for_text: bool = False


StyleFunction = Callable[[Dict[str, Any]], StyleProperties]


def min_zoom_for_scale(scale: Optional[float]) -> int:
    """
    Returns the lowest tile zoom at which a feature of the given scale
    denominator is drawn. Mirrors the filter in the generated MVT functions.

    A missing or non-positive scale is visible at every zoom.
    """
    if not scale or scale <= 0:
        return 0
    return int(ZOOM_SCALE_BASE - math.ceil(math.log2(scale)))


@dataclass(frozen=True)
class LayerDefinition:
    """
    Declarative definition of one S-57 feature layer.

    Adding a ColumnDefinition here is enough for the new column to appear in
    the table DDL, the upsert statement and the tile function.
    """
    s57_name: str
    table: str
    columns: Tuple[ColumnDefinition, ...]
    style_fn: Optional[StyleFunction] = None
    style_layers: Tuple[StyleLayerDefinition, ...] = field(default_factory=tuple)

    def __post_init__(self):
        names = [c.sql_column for c in self.columns]
        reserved = set(LEADING_COMMON_COLUMNS) | set(TRAILING_COMMON_COLUMNS) | {'id', 'created_at'}
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"Layer '{self.s57_name}' defines duplicate columns: {sorted(duplicates)}")
        clashes = reserved.intersection(names)
        if clashes:
            raise ValueError(f"Layer '{self.s57_name}' redefines common columns: {sorted(clashes)}")

    @property
    def s57_fields(self) -> List[str]:
        return [c.s57_field for c in self.columns]

    @property
    def layer_columns(self) -> List[str]:
        return [c.sql_column for c in self.columns]

    def style_for(self, typed: Dict[str, Any]) -> StyleProperties:
        if self.style_fn is None:
            return StyleProperties()
        return self.style_fn(typed)

    # ------------------------------------------------------------------
    # DDL
    # ------------------------------------------------------------------

    def create_table_sql(self) -> str:
        """Generate `CREATE TABLE IF NOT EXISTS` DDL in the standard column layout."""
        lines = [
            "    id SERIAL PRIMARY KEY",
            "    enc_name TEXT NOT NULL",
            "    feature_fid INTEGER NOT NULL",
            "    edition INTEGER",
            "    update_number INTEGER DEFAULT 0",
            "    compilation_scale INTEGER NOT NULL",
            "    scamin NUMERIC",
            "    objl INTEGER",
        ]
        lines.extend(f"    {c.sql_column} {c.col_type.sql_type}" for c in self.columns)
        lines.extend([
            "    ac TEXT",
            "    lc TEXT",
            "    sy TEXT",
            "    sordat TEXT",
            "    sorind TEXT",
            "    attributes JSONB",
            f"    geom GEOMETRY(GEOMETRY, {SRID})",
            "    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP",
            # NULLS NOT DISTINCT: rows of a chart with unknown edition must still conflict
            f"    CONSTRAINT {self.table}_unique_feature UNIQUE NULLS NOT DISTINCT ({', '.join(CONFLICT_KEY)})",
        ])
        body = ",\n".join(lines)
        return f"CREATE TABLE IF NOT EXISTS {self.table} (\n{body}\n);"

    def create_indexes_sql(self) -> List[str]:
        """The four indexes every layer table carries."""
        t = self.table
        return [
            f"CREATE INDEX IF NOT EXISTS {t}_geom_idx ON {t} USING GIST(geom);",
            f"CREATE INDEX IF NOT EXISTS {t}_scamin_idx ON {t}(scamin) WHERE scamin IS NOT NULL;",
            f"CREATE INDEX IF NOT EXISTS {t}_enc_name_idx ON {t}(enc_name);",
            f"CREATE INDEX IF NOT EXISTS {t}_compilation_scale_idx ON {t}(compilation_scale);",
        ]

    def tile_select_sql(self) -> str:
        """
        SELECT producing one MVT layer for this table. Expects `z`, `tile_env`
        and `tile_env_4326` to be in scope (see the tile functions).

        Coarser charts sort first so finer charts are drawn on top of them.
        """
        layer_cols = "".join(f",\n            d.{c}" for c in self.layer_columns)
        return f"""SELECT ST_AsMVT(tile, '{self.table}', 4096, 'geom')
    FROM (
        SELECT
            ST_AsMVTGeom(
                ST_Transform(d.geom, 3857),
                tile_env,
                4096,
                64,
                true
            ) AS geom,
            d.id,
            d.enc_name,
            d.objl{layer_cols},
            d.ac AS "AC",
            d.lc AS "LC",
            d.sy AS "SY",
            d.scamin,
            d.sordat,
            d.attributes
        FROM {self.table} d
        WHERE
            d.geom && tile_env_4326
            AND ST_IsValid(d.geom)
            AND (d.compilation_scale <= 0
                 OR ({ZOOM_SCALE_BASE} - CEIL(LN(d.compilation_scale::double precision) / LN(2)))::int <= z)
            AND (d.scamin IS NULL OR d.scamin <= 0
                 OR ({ZOOM_SCALE_BASE} - CEIL(LN(d.scamin::double precision) / LN(2)))::int <= z)
        ORDER BY d.compilation_scale DESC
    ) AS tile
    WHERE geom IS NOT NULL"""

    def create_mvt_function_sql(self) -> str:
        """Generate `CREATE OR REPLACE FUNCTION {table}_mvt(z, x, y)` returning a vector tile."""
        return _wrap_tile_function(f"{self.table}_mvt", f"SELECT INTO mvt COALESCE(({self.tile_select_sql()}), ''::bytea);")

    # ------------------------------------------------------------------
    # DML
    # ------------------------------------------------------------------

    def insert_columns(self) -> List[str]:
        """
        Column order shared by the upsert statement and its bound parameters:
        leading common columns, layer columns, trailing common columns.
        """
        return [*LEADING_COMMON_COLUMNS, *self.layer_columns, *TRAILING_COMMON_COLUMNS]

    def build_upsert_sql(self) -> str:
        """Build the INSERT ... ON CONFLICT DO UPDATE statement with named parameters."""
        columns = self.insert_columns()
        placeholders = []
        for col in columns:
            if col == 'geom':
                # ST_Force2D drops the Z ordinate carried by SOUNDG points
                placeholders.append(f"ST_Force2D(ST_SetSRID(ST_GeomFromGeoJSON(:geom), {SRID}))")
            elif col == 'attributes':
                placeholders.append("CAST(:attributes AS JSONB)")
            else:
                placeholders.append(f":{col}")

        updates = [f"{col} = EXCLUDED.{col}" for col in columns if col not in CONFLICT_KEY]

        return (
            f"INSERT INTO {self.table} ({', '.join(columns)}) "
            f"VALUES ({', '.join(placeholders)}) "
            f"ON CONFLICT ({', '.join(CONFLICT_KEY)}) DO UPDATE SET {', '.join(updates)}"
        )


def _wrap_tile_function(name: str, body: str) -> str:
    return f"""CREATE OR REPLACE FUNCTION {name}(z integer, x integer, y integer, query_params json DEFAULT '{{}}'::json)
RETURNS bytea
AS $$
DECLARE
    mvt bytea;
    tile_env geometry;
    tile_env_4326 geometry;
BEGIN
    tile_env := ST_TileEnvelope(z, x, y);
    tile_env_4326 := ST_Transform(tile_env, {SRID});

    {body}

    RETURN mvt;
END;
$$ LANGUAGE plpgsql STABLE PARALLEL SAFE;"""


def create_unified_mvt_function_sql(layers: Sequence[LayerDefinition], name: str = 'enc_mvt') -> str:
    """
    Generate one tile function returning every layer in a single payload.
    MVT layers are independent protobuf messages, so concatenation is valid.
    """
    if not layers:
        raise ValueError("At least one layer definition is required for the unified tile function.")
    parts = [f"COALESCE(({layer.tile_select_sql()}), ''::bytea)" for layer in layers]
    body = "SELECT INTO mvt " + "\n        || ".join(parts) + ";"
    return _wrap_tile_function(name, body)
