"""
Unit tests for the page text index
"""

import fitz  # PyMuPDF

from page_text_helpers import line_of, lines_of, xy

from sidecar_annotator.anchoring.text_index import (
    NO_WORD,
    Word,
    bounds_from_quads,
    build_index,
    normalize_whitespace,
    prefix_context,
    quad_points_for_range,
    suffix_context,
    word_range_for_char_range,
)


def test_single_line_text_and_mapping():
    index = build_index(lines_of("The quick brown fox"))

    assert index.text == "The quick brown fox"
    assert len(index.char_to_word_index) == len(index.text)
    assert index.char_to_word_index[:4] == (0, 0, 0, NO_WORD)
    assert index.char_to_word_index[4] == 1
    assert [w.text for w in index.words] == ["The", "quick", "brown", "fox"]


def test_whitespace_runs_collapse_to_one_space():
    r = fitz.Rect(0, 0, 10, 10)
    lines = [
        [Word(r, "Hello"), Word(r, "  big   world ")],
        [Word(r, "\t"), Word(r, "end")],
    ]
    index = build_index(lines)

    assert index.text == "Hello big world end"
    assert "  " not in index.text
    assert not index.text.startswith(" ")
    assert not index.text.endswith(" ")
    # Characters of "big" and "world" both point at the second word
    assert index.char_to_word_index[index.text.index("big")] == 1
    assert index.char_to_word_index[index.text.index("world")] == 1
    assert index.char_to_word_index[index.text.index("end")] == 3


def test_lines_are_joined_with_one_space():
    index = build_index(lines_of("alpha beta", "gamma delta", "epsilon"))
    assert index.text == "alpha beta gamma delta epsilon"
    assert [w.line_index for w in index.words] == [0, 0, 1, 1, 2]


def test_empty_input():
    assert build_index(None).is_empty
    assert build_index([]).is_empty
    assert build_index([[], None]).text == ""


def test_context_windows():
    index = build_index(lines_of("The quick brown fox"))
    start = index.text.index("quick brown")
    end = start + len("quick brown")

    assert prefix_context(index, start, 64) == "The "
    assert suffix_context(index, end, 64) == " fox"
    assert prefix_context(index, start, 2) == "e "
    assert prefix_context(index, 0, 64) is None
    assert suffix_context(index, len(index.text), 64) is None


def test_word_range_for_char_range():
    index = build_index(lines_of("The quick brown fox"))
    start = index.text.index("quick brown")

    word_range = word_range_for_char_range(index, start, start + len("quick brown"))
    assert (word_range.start_word, word_range.end_word_exclusive) == (1, 3)
    assert word_range_for_char_range(index, 3, 4) is None  # only the separator
    assert word_range_for_char_range(index, 5, 5) is None


def test_quads_one_per_line():
    index = build_index(lines_of("alpha beta", "gamma delta"))
    start = index.text.index("beta gamma")

    quads = quad_points_for_range(index, start, start + len("beta gamma"))

    # beta spans x 30..50 on line 0, gamma spans x 0..25 on line 1 (y 12..22)
    assert xy(quads) == [
        (30.0, 10.0), (50.0, 10.0), (50.0, 0.0), (30.0, 0.0),
        (0.0, 22.0), (25.0, 22.0), (25.0, 12.0), (0.0, 12.0),
    ]


def test_quads_union_words_on_same_line():
    words = line_of("The quick brown fox")
    index = build_index([words])
    start = index.text.index("quick brown")

    quads = quad_points_for_range(index, start, start + len("quick brown"))

    assert xy(quads) == [(20.0, 10.0), (75.0, 10.0), (75.0, 0.0), (20.0, 0.0)]


def test_bounds_from_quads():
    quads = [fitz.Point(0, 10), fitz.Point(20, 10), fitz.Point(20, 0), fitz.Point(0, 0),
             fitz.Point(5, 22), fitz.Point(30, 22), fitz.Point(30, 12), fitz.Point(5, 12)]
    bounds = bounds_from_quads(quads)
    assert tuple(bounds) == (0.0, 0.0, 30.0, 22.0)
    assert bounds_from_quads(quads[:3]) is None
    assert bounds_from_quads(None) is None
    assert bounds_from_quads([None, None, None, None]) is None


def test_normalize_whitespace():
    assert normalize_whitespace("  quick \n brown\t") == "quick brown"
    assert normalize_whitespace("   ") is None
    assert normalize_whitespace(None) is None
