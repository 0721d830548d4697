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
layers.py

The registry of S-57 feature layers imported into PostGIS.

Each layer is a LayerDefinition value with its style function. The set is
closed: to import another object class, add a definition here and list it
in LAYER_REGISTRY.
"""

from typing import Any, Dict, List, Optional

from .layer_schema import (
    ColType,
    ColumnDefinition,
    LayerDefinition,
    StyleLayerDefinition,
    StyleLayerType,
    StyleProperties,
)
from ..utils.s57_colours import Colour, parse_colours

# Depth at which soundings switch from the shallow to the deep colour (metres)
SOUNDING_SAFETY_DEPTH = 9.0

# CATLIT value for aero lights
CATLIT_AERO = 8


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_int_set(value: Any) -> set:
    """List attributes such as CATLIT may be a scalar, a list or a '1,4' string."""
    if value is None:
        return set()
    if isinstance(value, str):
        items = value.split(',')
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        items = [value]
    result = set()
    for item in items:
        try:
            result.add(int(str(item).strip()))
        except (TypeError, ValueError):
            continue
    return result


# ==============================================================================
# STYLE FUNCTIONS
# ==============================================================================

def depare_style(attrs: Dict[str, Any]) -> StyleProperties:
    """Depth area colour from the shallow end of the depth range (DRVAL1)."""
    drval1 = _as_float(attrs.get('DRVAL1'))
    drval2 = _as_float(attrs.get('DRVAL2'))

    if drval1 is not None and drval2 is not None and drval1 < 0.0 and drval2 <= 0.0:
        ac = 'DEPIT'  # intertidal
    elif drval1 is None:
        ac = 'DEPDW'  # unknown range, drawn as deep water
    elif drval1 <= 3.0:
        ac = 'DEPVS'
    elif drval1 <= 6.0:
        ac = 'DEPMS'
    elif drval1 <= 9.0:
        ac = 'DEPMD'
    else:
        ac = 'DEPDW'

    return StyleProperties(ac=ac, lc='CHGRD')


def lndare_style(attrs: Dict[str, Any]) -> StyleProperties:
    return StyleProperties(ac='LANDA', lc='CSTLN', sy='LNDARE01')


def lights_style(attrs: Dict[str, Any]) -> StyleProperties:
    """
    Light symbol from the category of light (CATLIT) and its first colour.

    Multi-colour lights (sector lights) are symbolised by their first listed
    colour; lights without a recognised colour get the generic LITDEF11.
    """
    colours = parse_colours(attrs)
    first = colours[0] if colours else None

    if CATLIT_AERO in _as_int_set(attrs.get('CATLIT')):
        symbol = 'LIGHTS81' if first == Colour.RED else 'LIGHTS82'
    elif first == Colour.RED:
        symbol = 'LIGHTS11'
    elif first == Colour.GREEN:
        symbol = 'LIGHTS12'
    elif first == Colour.YELLOW:
        symbol = 'LIGHTS13'
    else:
        symbol = 'LITDEF11'

    return StyleProperties(sy=symbol)


def soundg_style(attrs: Dict[str, Any]) -> StyleProperties:
    """Shallow soundings in SNDG2 (black), deep soundings in SNDG1 (grey)."""
    depth = _as_float(attrs.get('DEPTH'))
    if depth is None:
        return StyleProperties()
    return StyleProperties(ac='SNDG2' if depth < SOUNDING_SAFETY_DEPTH else 'SNDG1')


# ==============================================================================
# LAYER DEFINITIONS
# ==============================================================================

DEPARE = LayerDefinition(
    s57_name='DEPARE',
    table='depare',
    columns=(
        ColumnDefinition('DRVAL1', 'drval1', ColType.FLOAT),
        ColumnDefinition('DRVAL2', 'drval2', ColType.FLOAT),
    ),
    style_fn=depare_style,
    style_layers=(
        StyleLayerDefinition('fill', StyleLayerType.FILL,
                             colors=('DEPIT', 'DEPVS', 'DEPMS', 'DEPMD', 'DEPDW')),
        StyleLayerDefinition('line', StyleLayerType.LINE, colors=('CHGRD',), line_width=0.5),
    ),
)

LNDARE = LayerDefinition(
    s57_name='LNDARE',
    table='lndare',
    columns=(
        ColumnDefinition('OBJNAM', 'objnam', ColType.TEXT),
        ColumnDefinition('CONDTN', 'condtn', ColType.INT),
        ColumnDefinition('NATSUR', 'natsur', ColType.INT),
        ColumnDefinition('NATQUA', 'natqua', ColType.INT),
    ),
    style_fn=lndare_style,
    style_layers=(
        StyleLayerDefinition('fill', StyleLayerType.FILL, colors=('LANDA',)),
        StyleLayerDefinition('line', StyleLayerType.LINE, colors=('CSTLN',), line_width=2.0),
        StyleLayerDefinition('icon', StyleLayerType.ICON),
    ),
)

LIGHTS = LayerDefinition(
    s57_name='LIGHTS',
    table='lights',
    columns=(
        ColumnDefinition('CATLIT', 'catlit', ColType.INT),
        ColumnDefinition('COLOUR', 'colour', ColType.INT),  # first colour only
        ColumnDefinition('LITCHR', 'litchr', ColType.INT),
        ColumnDefinition('SIGPER', 'sigper', ColType.FLOAT),
        ColumnDefinition('VALNMR', 'valnmr', ColType.FLOAT),
        ColumnDefinition('HEIGHT', 'height', ColType.FLOAT),
        ColumnDefinition('OBJNAM', 'objnam', ColType.TEXT),
    ),
    style_fn=lights_style,
    style_layers=(StyleLayerDefinition('icon', StyleLayerType.ICON),),
)

SOUNDG = LayerDefinition(
    s57_name='SOUNDG',
    table='soundg',
    columns=(
        # Filled by the S57 driver from the Z ordinate (ADD_SOUNDG_DEPTH=ON)
        ColumnDefinition('DEPTH', 'depth', ColType.FLOAT),
        ColumnDefinition('TECSOU', 'tecsou', ColType.INT),
        ColumnDefinition('QUASOU', 'quasou', ColType.INT),
        ColumnDefinition('STATUS', 'status', ColType.INT),
    ),
    style_fn=soundg_style,
    style_layers=(
        StyleLayerDefinition('text', StyleLayerType.TEXT,
                             colors=('SNDG1', 'SNDG2'),
                             text_field='depth_meters_whole',
                             text_size=16.0,
                             text_halo_width=2.5,
                             text_halo_color='#FFFFFF',
                             text_anchor='top',
                             text_offset=(0.0, 0.5),
                             area_color_for_text=True),
    ),
)

# Import order: areas first, then points
LAYER_REGISTRY = (DEPARE, LNDARE, LIGHTS, SOUNDG)


def all_layers() -> List[LayerDefinition]:
    """Returns every registered layer in import order."""
    return list(LAYER_REGISTRY)


def get_layer(name: str) -> LayerDefinition:
    """Looks up a layer by S-57 object class or table name (case-insensitive)."""
    wanted = name.strip().lower()
    for layer in LAYER_REGISTRY:
        if layer.s57_name.lower() == wanted or layer.table == wanted:
            return layer
    raise KeyError(f"No layer definition registered for '{name}'")
