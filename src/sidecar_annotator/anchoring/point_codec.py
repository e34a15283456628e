"""
Point Codec - compact binary encoding of point lists

Layout (little-endian):
    int32   count
    count x (float32 x, float32 y)

A missing point is written as (NaN, NaN). On decode, any pair holding NaN or
infinity comes back as ``None`` so a single bad coordinate in a legacy row does
not take the whole list with it.
"""

import base64
import binascii
import logging
import math
import struct
from typing import List, Optional, Sequence

import fitz  # PyMuPDF

logger = logging.getLogger(__name__)

_COUNT = struct.Struct("<i")
_PAIR = struct.Struct("<ff")

_NAN = float("nan")


def encode_points(points: Sequence[Optional[fitz.Point]]) -> bytes:
    """Encode points to the binary record format."""
    buffer = bytearray(_COUNT.size + _PAIR.size * len(points))
    _COUNT.pack_into(buffer, 0, len(points))
    offset = _COUNT.size
    for point in points:
        if point is None:
            x, y = _NAN, _NAN
        else:
            x, y = float(point[0]), float(point[1])
        _PAIR.pack_into(buffer, offset, x, y)
        offset += _PAIR.size
    return bytes(buffer)


def decode_points(blob: Optional[bytes]) -> Optional[List[Optional[fitz.Point]]]:
    """
    Decode a binary point record.

    Returns:
        The decoded list (non-finite pairs become ``None``), or ``None`` when the
        record itself is unusable: missing, shorter than the header, a negative
        count, or truncated before ``count`` pairs.
    """
    if blob is None or len(blob) < _COUNT.size:
        return None

    (count,) = _COUNT.unpack_from(blob, 0)
    if count < 0:
        return None
    if len(blob) < _COUNT.size + count * _PAIR.size:
        logger.debug(f"Point record truncated: header says {count} points, {len(blob)} bytes available")
        return None

    out: List[Optional[fitz.Point]] = []
    for x, y in _PAIR.iter_unpack(blob[_COUNT.size:_COUNT.size + count * _PAIR.size]):
        if math.isfinite(x) and math.isfinite(y):
            out.append(fitz.Point(x, y))
        else:
            out.append(None)
    return out


def encode_points_b64(points: Sequence[Optional[fitz.Point]]) -> str:
    return base64.b64encode(encode_points(points)).decode("ascii")


def decode_points_b64(text: Optional[str]) -> Optional[List[Optional[fitz.Point]]]:
    if not text:
        return None
    try:
        blob = base64.b64decode(text, validate=False)
    except (binascii.Error, ValueError):
        return None
    return decode_points(blob)
