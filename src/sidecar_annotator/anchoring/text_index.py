"""
Page Text Index - searchable page text addressable back to word geometry

The index flattens a page's lines of words into one whitespace-normalized
string. Every character keeps a pointer back to the word it came from so a
substring hit can be turned into highlight quads for the covered lines.
"""

from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Sequence, Tuple

import fitz  # PyMuPDF

# char_to_word_index entry for a collapsed whitespace position
NO_WORD = -1


class Word(NamedTuple):
    """One extracted word: its bounding rectangle and literal text."""

    rect: fitz.Rect
    text: str


@dataclass(frozen=True)
class WordRef:
    line_index: int
    bounds: fitz.Rect
    text: str


@dataclass(frozen=True)
class WordRange:
    start_word: int
    end_word_exclusive: int


@dataclass(frozen=True)
class PageTextIndex:
    text: str
    char_to_word_index: Tuple[int, ...]
    words: Tuple[WordRef, ...]

    @property
    def is_empty(self) -> bool:
        return not self.text


EMPTY_INDEX = PageTextIndex("", (), ())


def normalize_whitespace(s: Optional[str]) -> Optional[str]:
    """Collapse whitespace runs to one space and trim; empty results become None."""
    if s is None:
        return None
    normalized = " ".join(s.split())
    return normalized or None


def build_index(lines: Optional[Sequence[Optional[Sequence[Optional[Word]]]]]) -> PageTextIndex:
    """
    Build a PageTextIndex from ordered lines of words.

    Non-whitespace characters are copied through with the index of their
    source word. Any run of whitespace (inside a word, between words, or at a
    line end) becomes a single space mapped to NO_WORD. Trailing spaces are
    removed from the result.
    """
    if not lines:
        return EMPTY_INDEX

    words: List[WordRef] = []
    chars: List[str] = []
    mapping: List[int] = []
    last_was_space = True

    for line_index, line in enumerate(lines):
        if line is None:
            continue
        for word in line:
            if word is None:
                continue
            text = word.text or ""
            word_index = len(words)
            words.append(WordRef(line_index, fitz.Rect(word.rect), text))
            for ch in text:
                if ch.isspace():
                    if not last_was_space:
                        chars.append(" ")
                        mapping.append(NO_WORD)
                        last_was_space = True
                else:
                    chars.append(ch)
                    mapping.append(word_index)
                    last_was_space = False
            # Word boundary
            if not last_was_space:
                chars.append(" ")
                mapping.append(NO_WORD)
                last_was_space = True
        # Line break
        if not last_was_space:
            chars.append(" ")
            mapping.append(NO_WORD)
            last_was_space = True

    while chars and chars[-1] == " ":
        chars.pop()
        mapping.pop()

    return PageTextIndex("".join(chars), tuple(mapping), tuple(words))


def prefix_context(index: PageTextIndex, start: int, max_chars: int) -> Optional[str]:
    """Up to ``max_chars`` of index text immediately before ``start``."""
    if max_chars <= 0:
        return None
    s = max(0, start - max_chars)
    if s >= start:
        return None
    return index.text[s:start] or None


def suffix_context(index: PageTextIndex, end: int, max_chars: int) -> Optional[str]:
    """Up to ``max_chars`` of index text immediately after ``end``."""
    if max_chars <= 0:
        return None
    e = min(len(index.text), end + max_chars)
    if end >= e:
        return None
    return index.text[end:e] or None


def word_span_for_char_range(index: PageTextIndex, start: int, end: int) -> Optional[Tuple[int, int]]:
    """Inclusive (min_word, max_word) touched by characters [start, end)."""
    if start < 0 or end <= start or start >= len(index.text):
        return None
    end = min(end, len(index.char_to_word_index))
    touched = [wi for wi in index.char_to_word_index[start:end] if wi >= 0]
    if not touched:
        return None
    return min(touched), max(touched)


def word_range_for_char_range(index: PageTextIndex, start: int, end: int) -> Optional[WordRange]:
    span = word_span_for_char_range(index, start, end)
    if span is None:
        return None
    return WordRange(span[0], span[1] + 1)


def union_rect(a: fitz.Rect, b: fitz.Rect) -> fitz.Rect:
    return fitz.Rect(min(a.x0, b.x0), min(a.y0, b.y0), max(a.x1, b.x1), max(a.y1, b.y1))


def rect_is_empty(r: fitz.Rect) -> bool:
    return r.x0 >= r.x1 or r.y0 >= r.y1


def quad_points_for_range(index: PageTextIndex, start: int, end: int) -> List[fitz.Point]:
    """
    Quads covering characters [start, end): one per text line, built from the
    union of the covered words on that line, as bottom-left, bottom-right,
    top-right, top-left.
    """
    span = word_span_for_char_range(index, start, end)
    if span is None:
        return []
    min_word, max_word = span

    line_rects = {}
    for wi in range(min_word, min(max_word, len(index.words) - 1) + 1):
        word = index.words[wi]
        current = line_rects.get(word.line_index)
        line_rects[word.line_index] = word.bounds if current is None else union_rect(current, word.bounds)

    out: List[fitz.Point] = []
    for line_index in sorted(line_rects):
        r = line_rects[line_index]
        if rect_is_empty(r):
            continue
        out.extend([
            fitz.Point(r.x0, r.y1),
            fitz.Point(r.x1, r.y1),
            fitz.Point(r.x1, r.y0),
            fitz.Point(r.x0, r.y0),
        ])
    return out


def bounds_from_quads(points: Optional[Sequence[Optional[fitz.Point]]]) -> Optional[fitz.Rect]:
    """Bounding rectangle of all non-null points, or None when fewer than a quad."""
    if not points or len(points) < 4:
        return None
    xs = [p.x for p in points if p is not None]
    ys = [p.y for p in points if p is not None]
    if not xs:
        return None
    return fitz.Rect(min(xs), min(ys), max(xs), max(ys))
