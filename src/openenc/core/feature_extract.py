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
feature_extract.py

Turns an OGR feature read by the S57 driver into the values stored in a
layer table: common S-57 attributes, typed layer columns, the residual
attribute bag and the geometry as GeoJSON.

Missing or malformed attributes are never an error here; they are simply
left out (or bound as NULL).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .layer_schema import ColType, LayerDefinition

logger = logging.getLogger(__name__)

# Attributes stored in dedicated columns on every layer table
COMMON_FIELDS = ('SCAMIN', 'OBJL', 'SORDAT', 'SORIND')

# Null marker written by some GDAL versions into integer fields
OGR_NULL_INTEGER = -2147483648


@dataclass
class CommonAttributes:
    """Attributes present on every S-57 feature, plus everything left unmapped."""
    scamin: Optional[float] = None
    objl: Optional[int] = None
    sordat: Optional[str] = None
    sorind: Optional[str] = None
    other_attributes: Dict[str, Any] = field(default_factory=dict)


def field_value(feature, name: str) -> Any:
    """
    Looks up a field by name (OGR matches names case-insensitively).
    Returns None when the field is absent, unset, null or unreadable.
    """
    try:
        idx = feature.GetFieldIndex(name)
        if idx is None or idx < 0:
            return None
        if not feature.IsFieldSetAndNotNull(idx):
            return None
        value = feature.GetField(idx)
    except Exception as e:
        logger.debug(f"Could not read field '{name}': {e}")
        return None

    if value == OGR_NULL_INTEGER:
        return None
    if isinstance(value, (list, tuple)) and not value:
        return None
    return value


def _first(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def coerce_float(value: Any) -> Optional[float]:
    value = _first(value)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def coerce_int(value: Any) -> Optional[int]:
    value = _first(value)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def coerce_text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


_COERCERS = {
    ColType.FLOAT: coerce_float,
    ColType.INT: coerce_int,
    ColType.TEXT: coerce_text,
}


def _field_names(feature) -> List[str]:
    names = []
    try:
        for i in range(feature.GetFieldCount()):
            names.append(feature.GetFieldDefnRef(i).GetName())
    except Exception as e:
        logger.debug(f"Could not enumerate feature fields: {e}")
    return names


def extract_common(feature, known_fields: Iterable[str]) -> Tuple[CommonAttributes, Dict[str, Any]]:
    """
    Extracts the common attributes and the typed map of layer-specific fields.

    Args:
        feature: OGR feature from the S57 driver.
        known_fields: Layer-specific S-57 field names (e.g. ['DRVAL1', 'DRVAL2']).

    Returns:
        (CommonAttributes, typed) where `typed` maps the upper-cased field
        name to its raw value for every known field that is present.
        Every other set field ends up verbatim in `other_attributes`.
    """
    known = [f.upper() for f in known_fields]

    typed: Dict[str, Any] = {}
    for name in known:
        value = field_value(feature, name)
        if value is not None:
            typed[name] = value

    mapped = set(COMMON_FIELDS) | set(known)
    other: Dict[str, Any] = {}
    for name in _field_names(feature):
        if name.upper() in mapped:
            continue
        value = field_value(feature, name)
        if value is not None:
            other[name] = value

    common = CommonAttributes(
        scamin=coerce_float(field_value(feature, 'SCAMIN')),
        objl=coerce_int(field_value(feature, 'OBJL')),
        sordat=coerce_text(field_value(feature, 'SORDAT')),
        sorind=coerce_text(field_value(feature, 'SORIND')),
        other_attributes=other,
    )
    return common, typed


def extract_values(layer: LayerDefinition, typed: Dict[str, Any]) -> Dict[str, Any]:
    """Coerces the typed map into `{sql_column: value}` in column definition order."""
    return {
        col.sql_column: _COERCERS[col.col_type](typed.get(col.s57_field.upper()))
        for col in layer.columns
    }


def feature_id(feature) -> int:
    """OGR feature id, or 0 when the driver does not provide one."""
    try:
        fid = feature.GetFID()
    except Exception:
        return 0
    if fid is None or fid < 0:
        return 0
    return int(fid)


def feature_geometry_geojson(feature) -> Optional[str]:
    """
    Returns the feature geometry as a GeoJSON string.

    None means there is nothing to store (no geometry, or an empty export)
    and the feature should be skipped. Conversion failures raise.
    """
    geom = feature.GetGeometryRef()
    if geom is None:
        return None
    geojson = geom.ExportToJson()
    if not geojson:
        return None
    return geojson
