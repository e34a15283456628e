"""
Layout profile ids for reflowable documents.

A layout profile id names one pagination: page size, em size and the reader's
font, margin and line-spacing settings. Floats are rounded before formatting so
tiny float noise does not produce a new layout. Theme is not part of the id.
"""

import math
import re
from typing import Optional, Tuple

_PROFILE_RE = re.compile(r"^w(-?\d+)_h(-?\d+)_em(-?\d+)_f(-?\d+)_m(-?\d+)_l(-?\d+)$")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def layout_profile_id(page_width: Optional[float], page_height: Optional[float], em: float,
                      font_size: float, margin_scale: float = 1.0, line_spacing: float = 1.0) -> str:
    """Build the id; an unknown page size is written as -1 x -1."""
    w = page_width if page_width is not None else -1.0
    h = page_height if page_height is not None else -1.0
    return "w%d_h%d_em%d_f%d_m%d_l%d" % (
        _round_half_up(w * 10),
        _round_half_up(h * 10),
        _round_half_up(em * 100),
        _round_half_up(font_size * 10),
        _round_half_up(margin_scale * 100),
        _round_half_up(line_spacing * 100),
    )


def parse_page_size(profile_id: Optional[str]) -> Optional[Tuple[float, float]]:
    """(width, height) encoded in a layout profile id, or None if absent or unknown."""
    if not profile_id:
        return None
    m = _PROFILE_RE.match(profile_id)
    if m is None:
        return None
    w10, h10 = int(m.group(1)), int(m.group(2))
    if w10 <= 0 or h10 <= 0:
        return None
    return w10 / 10.0, h10 / 10.0
