"""
Quote Matcher - locate a quoted text span inside a page text index

Two ranking modes share one occurrence enumeration:

- by bounds: used when the highlight is created, in the same layout, so the
  selection rectangle is authoritative and geometric overlap picks the hit;
- by context: used after a relayout, where geometry is stale and the stored
  prefix/suffix text around the quote picks the hit.

Every occurrence of the quote is considered, overlapping ones included. When
the quote does not occur at all the matchers return None; callers must not
invent a fallback position.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

import fitz  # PyMuPDF

from .text_index import (
    PageTextIndex,
    bounds_from_quads,
    quad_points_for_range,
    rect_is_empty,
    word_span_for_char_range,
)

logger = logging.getLogger(__name__)

# Floor for the distance penalty of non-overlapping candidates
_MIN_DISTANCE_SCORE = -1_000_000


@dataclass(frozen=True)
class QuoteMatch:
    start: int
    end: int
    score: int
    quad_points: Tuple[fitz.Point, ...]
    bounds: fitz.Rect


class ContextScorer(ABC):
    """Scores how well the text around an occurrence agrees with a stored prefix/suffix."""

    @abstractmethod
    def score(self, text: str, start: int, end: int,
              prefix: Optional[str], suffix: Optional[str]) -> int:
        """Agreement score of the occurrence at ``text[start:end]``; 0 means none."""


def common_suffix_length(a: str, b: str) -> int:
    count = 0
    for ca, cb in zip(reversed(a), reversed(b)):
        if ca != cb:
            break
        count += 1
    return count


def common_prefix_length(a: str, b: str) -> int:
    count = 0
    for ca, cb in zip(a, b):
        if ca != cb:
            break
        count += 1
    return count


class LongestContextScorer(ContextScorer):
    """
    Counts characters of the prefix matching right before the occurrence plus
    characters of the suffix matching right after it. Each side takes the
    better of the raw and the whitespace-trimmed comparison.
    """

    def score(self, text: str, start: int, end: int,
              prefix: Optional[str], suffix: Optional[str]) -> int:
        total = 0
        if prefix:
            before = text[max(0, start - len(prefix)):start]
            total += max(common_suffix_length(prefix, before),
                         common_suffix_length(prefix.strip(), before.strip()))
        if suffix:
            after = text[end:min(len(text), end + len(suffix))]
            total += max(common_prefix_length(suffix, after),
                         common_prefix_length(suffix.strip(), after.strip()))
        return total


DEFAULT_SCORER = LongestContextScorer()


def find_occurrences(text: str, quote: str) -> Iterator[int]:
    """Start offsets of every occurrence of ``quote`` in ``text``, overlaps included."""
    if not quote:
        return
    pos = text.find(quote)
    while pos >= 0:
        yield pos
        pos = text.find(quote, pos + 1)


def _candidates(index: PageTextIndex, quote: str) -> Iterator[Tuple[int, int, List[fitz.Point], fitz.Rect]]:
    """Occurrences that map back to non-empty geometry."""
    if not quote or index.is_empty:
        return
    for start in find_occurrences(index.text, quote):
        end = start + len(quote)
        quads = quad_points_for_range(index, start, end)
        bounds = bounds_from_quads(quads)
        if bounds is None or rect_is_empty(bounds):
            continue
        yield start, end, quads, bounds


def overlap_score(a: fitz.Rect, b: fitz.Rect) -> int:
    """Intersection area when the rectangles overlap, else minus the squared center distance."""
    x0, y0 = max(a.x0, b.x0), max(a.y0, b.y0)
    x1, y1 = min(a.x1, b.x1), min(a.y1, b.y1)
    if x0 < x1 and y0 < y1:
        return int((x1 - x0) * (y1 - y0))
    dx = (a.x0 + a.x1) / 2.0 - (b.x0 + b.x1) / 2.0
    dy = (a.y0 + a.y1) / 2.0 - (b.y0 + b.y1) / 2.0
    return int(max(_MIN_DISTANCE_SCORE, -(dx * dx + dy * dy)))


def best_match_by_bounds(index: PageTextIndex, quote: str,
                         selection_bounds: fitz.Rect) -> Optional[QuoteMatch]:
    """Occurrence of ``quote`` whose geometry best overlaps ``selection_bounds``."""
    best: Optional[QuoteMatch] = None
    for start, end, quads, bounds in _candidates(index, quote):
        score = overlap_score(selection_bounds, bounds)
        if best is None or score > best.score:
            best = QuoteMatch(start, end, score, tuple(quads), bounds)
    return best


def best_match_by_context(index: PageTextIndex, quote: str,
                          prefix: Optional[str], suffix: Optional[str],
                          scorer: Optional[ContextScorer] = None) -> Optional[QuoteMatch]:
    """Occurrence of ``quote`` whose surroundings best agree with ``prefix``/``suffix``."""
    scorer = scorer or DEFAULT_SCORER
    best: Optional[QuoteMatch] = None
    for start, end, quads, bounds in _candidates(index, quote):
        score = scorer.score(index.text, start, end, prefix, suffix)
        if best is None or score > best.score:
            best = QuoteMatch(start, end, score, tuple(quads), bounds)
    return best


def best_match_by_context_and_word_anchor(index: PageTextIndex, quote: str,
                                          prefix: Optional[str], suffix: Optional[str],
                                          anchor_start_word: Optional[int],
                                          scorer: Optional[ContextScorer] = None) -> Optional[QuoteMatch]:
    """
    Context match where equal context scores are broken by closeness of the
    occurrence's first word to the recorded ``anchor_start_word``.
    """
    if anchor_start_word is None or anchor_start_word < 0:
        return best_match_by_context(index, quote, prefix, suffix, scorer)

    scorer = scorer or DEFAULT_SCORER
    best: Optional[QuoteMatch] = None
    best_distance = 0
    for start, end, quads, bounds in _candidates(index, quote):
        score = scorer.score(index.text, start, end, prefix, suffix)
        span = word_span_for_char_range(index, start, end)
        distance = abs(span[0] - anchor_start_word) if span else len(index.words)
        if best is None or score > best.score or (score == best.score and distance < best_distance):
            best = QuoteMatch(start, end, score, tuple(quads), bounds)
            best_distance = distance
    if best is not None:
        logger.debug(f"Word-anchored match at chars {best.start}-{best.end}, "
                     f"score {best.score}, {best_distance} words from hint")
    return best
