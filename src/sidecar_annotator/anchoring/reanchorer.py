"""
Relayout Re-anchorer - move highlights to a new pagination of a reflowable document

After a relayout (font size, viewport, margins) stored highlight geometry no
longer lines up with the text. For each highlight made under another layout
that carries a quote, this module estimates where the text went, searches
outward from that page, scores candidates by their surrounding context, and
rewrites the accepted highlights in place under the new layout profile id.

Highlights without a confident match are left untouched: they stay visible
under their original layout, and nothing is ever deleted here.
"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import Dict, Iterator, Optional, Protocol, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from ..config import CONFIG, SidecarConfig
from ..models import AnnotationKind, Highlight
from .quote_matcher import (
    ContextScorer,
    QuoteMatch,
    best_match_by_context,
    best_match_by_context_and_word_anchor,
)
from .text_index import PageTextIndex, Word, build_index, normalize_whitespace

logger = logging.getLogger(__name__)


class PageTextProvider(Protocol):
    """Page text and location lookups under the *current* layout."""

    def page_count(self) -> int:
        ...

    def text_lines(self, page_index: int) -> Sequence[Sequence[Word]]:
        ...

    def page_for_location(self, token: int) -> int:
        """Page index for a layout-independent location token, or -1."""
        ...


@dataclass
class ReanchorReport:
    """Outcome of one re-anchoring pass."""

    updated: int = 0
    rejected: int = 0
    skipped: int = 0
    cancelled: bool = False


@dataclass(frozen=True)
class SearchHit:
    page_index: int
    distance: int
    match: QuoteMatch

    @property
    def rank(self) -> int:
        return self.match.score * 10 - self.distance


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def candidate_pages(target: int, page_count: int, radius: int) -> Iterator[Tuple[int, int]]:
    """
    Yield (page_index, distance) around ``target`` in increasing distance:
    target, target-1, target+1, target-2, target+2, ... Pages outside the
    document are skipped; the radius is capped at ``page_count - 1``.
    """
    if page_count <= 0:
        return
    last = page_count - 1
    center = _clamp(target, 0, last)
    radius = min(max(0, radius), last)
    for distance in range(radius + 1):
        left = center - distance
        if left >= 0:
            yield left, distance
        right = center + distance
        if distance != 0 and right <= last:
            yield right, distance


def estimate_target_page(highlight: Highlight, page_count: int,
                         page_text: Optional[PageTextProvider] = None) -> int:
    """
    Best guess at the highlight's page under the current layout: its reflow
    location if the provider can resolve it, else its fractional document
    position, else its stored page index. Always within [0, page_count - 1].
    """
    last = max(0, page_count - 1)
    if highlight.reflow_location is not None and page_text is not None:
        try:
            page = page_text.page_for_location(highlight.reflow_location)
        except (ValueError, RuntimeError) as e:
            logger.debug(f"Location {highlight.reflow_location} not resolvable: {e}")
            page = -1
        if page is not None and page >= 0:
            return _clamp(page, 0, last)
    if highlight.doc_progress is not None:
        return _clamp(int(round(highlight.doc_progress * last)), 0, last)
    return _clamp(highlight.page_index, 0, last)


class RelayoutReanchorer:
    """Re-anchors stale highlights of one document into the current layout."""

    def __init__(self, store, config: Optional[SidecarConfig] = None,
                 scorer: Optional[ContextScorer] = None):
        self.store = store
        self.config = config or CONFIG
        self.scorer = scorer

    def reanchor(self, doc_id: str, layout_profile_id: str, page_text: PageTextProvider,
                 cancel_event: Optional[threading.Event] = None) -> ReanchorReport:
        """
        Rewrite highlights from other layouts into ``layout_profile_id``.

        Must run off interactive threads. ``cancel_event`` is checked between
        pages; highlights written before cancellation stay written.
        """
        report = ReanchorReport()
        if not layout_profile_id:
            return report
        page_count = max(0, page_text.page_count())
        if page_count == 0:
            return report

        try:
            highlights = self.store.list_all(doc_id, AnnotationKind.HIGHLIGHT)
        except SQLAlchemyError as e:
            logger.warning(f"Could not list highlights for {doc_id}: {e}")
            return report

        index_cache: Dict[int, PageTextIndex] = {}
        for highlight in highlights:
            if highlight.layout_profile_id == layout_profile_id:
                continue
            quote = normalize_whitespace(highlight.quote)
            if not quote:
                report.skipped += 1
                continue

            hit = self._search(highlight, quote, page_text, page_count, index_cache, cancel_event)
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                break
            if hit is None:
                report.rejected += 1
                logger.debug(f"Highlight {highlight.id} kept in layout {highlight.layout_profile_id}")
                continue

            self.store.insert(doc_id, replace(
                highlight,
                page_index=hit.page_index,
                layout_profile_id=layout_profile_id,
                quad_points=hit.match.quad_points,
            ))
            report.updated += 1

        logger.info(f"Re-anchored {report.updated} highlight(s) of {doc_id} into {layout_profile_id} "
                    f"({report.rejected} unmatched, {report.skipped} without quote"
                    f"{', cancelled' if report.cancelled else ''})")
        return report

    def _search(self, highlight: Highlight, quote: str, page_text: PageTextProvider,
                page_count: int, index_cache: Dict[int, PageTextIndex],
                cancel_event: Optional[threading.Event]) -> Optional[SearchHit]:
        target = estimate_target_page(highlight, page_count, page_text)
        best: Optional[SearchHit] = None
        for page_index, distance in candidate_pages(target, page_count, self.config.reanchor_radius_pages):
            if cancel_event is not None and cancel_event.is_set():
                return None
            index = index_cache.get(page_index)
            if index is None:
                index = build_index(page_text.text_lines(page_index))
                index_cache[page_index] = index
            match = self.match_page(index, highlight, quote)
            if match is None:
                continue
            hit = SearchHit(page_index, distance, match)
            if best is None or hit.rank > best.rank:
                best = hit
        return best

    def match_page(self, index: PageTextIndex, highlight: Highlight, quote: str) -> Optional[QuoteMatch]:
        """Best context match on one page, or None when absent or too weak."""
        if index.is_empty:
            return None
        if highlight.anchor_start_word is not None and highlight.anchor_start_word >= 0:
            match = best_match_by_context_and_word_anchor(
                index, quote, highlight.quote_prefix, highlight.quote_suffix,
                highlight.anchor_start_word, self.scorer)
        else:
            match = best_match_by_context(
                index, quote, highlight.quote_prefix, highlight.quote_suffix, self.scorer)
        if match is None or len(match.quad_points) < 4:
            return None
        if highlight.has_context and match.score < self.config.reanchor_min_context_score:
            return None
        return match
