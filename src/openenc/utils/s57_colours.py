#!/usr/bin/env python3
"""
s57_colours.py

S-57 COLOUR attribute handling.

ID  | Meaning  | INT 1
----|----------|--------
1   | white    | IP 11.1
2   | black    |
3   | red      | IP 11.2
4   | green    | IP 11.3
5   | blue     | IP 11.4
6   | yellow   | IP 11.6
7   | grey     |
8   | brown    |
9   | amber    | IP 11.8
10  | violet   | IP 11.5
11  | orange   | IP 11.7
12  | magenta  |
13  | pink     |
"""

import logging
from enum import IntEnum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class Colour(IntEnum):
    """S-57 COLOUR codes. Values match the S-57 attribute catalogue."""
    WHITE = 1
    BLACK = 2
    RED = 3
    GREEN = 4
    BLUE = 5
    YELLOW = 6
    GREY = 7
    BROWN = 8
    AMBER = 9
    VIOLET = 10
    ORANGE = 11
    MAGENTA = 12
    PINK = 13

    @classmethod
    def from_value(cls, value: Any) -> Optional['Colour']:
        """Parses an int or numeric string, returning None for anything unknown."""
        try:
            if isinstance(value, float):
                return cls(int(value))
            return cls(int(str(value).strip()))
        except (TypeError, ValueError):
            return None


def parse_colours(attrs: Dict[str, Any]) -> List[Colour]:
    """
    Parses the COLOUR attribute of a typed attribute map.

    COLOUR may arrive as an int (6), a list of ints ([3, 1]), a numeric
    string ("6"), a comma separated string ("3,1") or a list of strings.
    Unknown codes are dropped; the original order is kept.
    """
    raw = attrs.get('COLOUR')
    if raw is None:
        return []

    if isinstance(raw, (list, tuple)):
        items = list(raw)
    elif isinstance(raw, str):
        items = [part for part in raw.split(',') if part.strip()]
    else:
        items = [raw]

    colours = []
    for item in items:
        colour = Colour.from_value(item)
        if colour is None:
            logger.debug(f"Ignoring unknown COLOUR value: {item!r}")
            continue
        colours.append(colour)
    return colours
