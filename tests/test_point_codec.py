"""
Test Point Codec - binary point records
"""

import math
import struct
import unittest
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import fitz  # PyMuPDF

from sidecar_annotator.anchoring.point_codec import (
    decode_points,
    decode_points_b64,
    encode_points,
    encode_points_b64,
)


def _xy(points):
    return [None if p is None else (p.x, p.y) for p in points]


class TestPointCodec(unittest.TestCase):
    """Test encoding and decoding of point lists"""

    def test_record_layout(self):
        """Count header followed by little-endian float32 pairs"""
        blob = encode_points([fitz.Point(1.5, 2.5)])
        self.assertEqual(blob, struct.pack("<iff", 1, 1.5, 2.5))

    def test_decode_preserves_length_and_values(self):
        """Finite points come back exactly, in order"""
        points = [fitz.Point(0, 0), fitz.Point(-12.25, 1024.5), fitz.Point(3.0, 0.125)]
        decoded = decode_points(encode_points(points))
        self.assertEqual(len(decoded), len(points))
        self.assertEqual(_xy(decoded), [(0.0, 0.0), (-12.25, 1024.5), (3.0, 0.125)])

    def test_nan_pair_decodes_to_none(self):
        """A NaN pair becomes a null entry without aborting the decode"""
        decoded = decode_points(encode_points([fitz.Point(1.5, 2.5), fitz.Point(math.nan, math.nan)]))
        self.assertEqual(_xy(decoded), [(1.5, 2.5), None])

    def test_none_point_round_trips_as_none(self):
        """Missing points are written as NaN and read back as None"""
        decoded = decode_points(encode_points([None, fitz.Point(4, 5), None]))
        self.assertEqual(_xy(decoded), [None, (4.0, 5.0), None])

    def test_infinite_coordinate_decodes_to_none(self):
        blob = struct.pack("<iffff", 2, math.inf, 1.0, 2.0, 3.0)
        self.assertEqual(_xy(decode_points(blob)), [None, (2.0, 3.0)])

    def test_empty_list(self):
        self.assertEqual(decode_points(encode_points([])), [])

    def test_unusable_records(self):
        """Missing, short, negative-count and truncated records decode to None"""
        self.assertIsNone(decode_points(None))
        self.assertIsNone(decode_points(b"\x01\x00"))
        self.assertIsNone(decode_points(struct.pack("<i", -1)))
        truncated = encode_points([fitz.Point(1, 1), fitz.Point(2, 2)])[:-4]
        self.assertIsNone(decode_points(truncated))

    def test_trailing_bytes_are_ignored(self):
        blob = encode_points([fitz.Point(1, 2)]) + b"\x00\x00"
        self.assertEqual(_xy(decode_points(blob)), [(1.0, 2.0)])

    def test_base64_helpers(self):
        text = encode_points_b64([fitz.Point(7, 8)])
        self.assertIsInstance(text, str)
        self.assertEqual(_xy(decode_points_b64(text)), [(7.0, 8.0)])
        self.assertIsNone(decode_points_b64(""))
        self.assertIsNone(decode_points_b64(None))


if __name__ == '__main__':
    unittest.main()
