"""
Annotation Session - per-document view of sidecar annotations

One session is opened per document. It is the single place the overlay painter
and the editing tools ask for annotations: it caches per-page listings, derives
the text-quote anchor of new highlights, and keeps an in-memory undo stack.

A session is owned by one caller at a time. Heavy work such as re-anchoring
may run on a worker thread (see ``worker.BackgroundReanchor``) but must not
overlap edits on the same session.
"""

import logging
import threading
from collections import deque
from dataclasses import replace
from typing import Callable, Deque, Dict, List, Optional, Sequence, Tuple

import fitz  # PyMuPDF
from sqlalchemy.exc import SQLAlchemyError

from .anchoring.quote_matcher import ContextScorer, best_match_by_bounds
from .anchoring.reanchorer import PageTextProvider, ReanchorReport, RelayoutReanchorer
from .anchoring.text_index import (
    Word,
    bounds_from_quads,
    build_index,
    normalize_whitespace,
    prefix_context,
    rect_is_empty,
    suffix_context,
    word_range_for_char_range,
)
from .bundle import Bundle, ImportStats, import_into_doc, write_bundle_json
from .config import CONFIG, SidecarConfig
from .models import (
    AnnotationKind,
    Highlight,
    HighlightType,
    InkStroke,
    Note,
    SidecarAnnotation,
    new_annotation_id,
    now_ms,
)
from .storage.store import AnnotationStore

logger = logging.getLogger(__name__)

UndoOp = Callable[[], None]

_CacheKey = Tuple[AnnotationKind, int]


def _sort_key(annotation: SidecarAnnotation):
    return annotation.created_at_ms, annotation.id


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def snap_rotation(rotation_deg: int) -> int:
    """Normalize to [0, 360) and snap to the nearest quarter turn."""
    rotation = int(rotation_deg) % 360
    snapped = ((rotation + 45) // 90) * 90
    return 0 if snapped >= 360 else snapped


class AnnotationSession:
    """
    Cached, undoable access to the sidecar annotations of one document.

    Args:
        doc_id: Canonical document id the rows are stored under.
        store: Backing store.
        layout_profile_id: Current pagination of a reflowable document, or
            None for fixed-layout documents.
        legacy_doc_id: Older id rows may still be stored under; they are
            migrated to ``doc_id`` once, on construction.
        config: Tunables; defaults to the module configuration.
        scorer: Context scoring strategy used when re-anchoring.
    """

    def __init__(self, doc_id: str, store: AnnotationStore,
                 layout_profile_id: Optional[str] = None,
                 legacy_doc_id: Optional[str] = None,
                 config: Optional[SidecarConfig] = None,
                 scorer: Optional[ContextScorer] = None):
        self.config = config or CONFIG
        if legacy_doc_id and legacy_doc_id != doc_id:
            try:
                store.migrate_doc_id(legacy_doc_id, doc_id)
            except SQLAlchemyError as e:
                # Rows stay under the legacy id; the document still opens
                logger.warning(f"Could not migrate annotations from {legacy_doc_id} to {doc_id}: {e}")

        self.doc_id = doc_id
        self.layout_profile_id = layout_profile_id
        self.store = store
        self.reanchorer = RelayoutReanchorer(store, self.config, scorer)

        self._cache: Dict[_CacheKey, Tuple[SidecarAnnotation, ...]] = {}
        self._undo: Deque[UndoOp] = deque(maxlen=max(1, self.config.max_undo_depth))

    # --- listing --------------------------------------------------------

    def _list(self, kind: AnnotationKind, page_index: int) -> Tuple[SidecarAnnotation, ...]:
        key = (kind, page_index)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        try:
            loaded = self.store.list(self.doc_id, kind, page_index, self.layout_profile_id)
        except SQLAlchemyError as e:
            logger.warning(f"Could not load {kind.value} annotations for page {page_index}: {e}")
            return ()
        result = tuple(loaded)
        self._cache[key] = result
        return result

    def ink_strokes_for_page(self, page_index: int) -> Tuple[InkStroke, ...]:
        return self._list(AnnotationKind.INK, page_index)

    def highlights_for_page(self, page_index: int) -> Tuple[Highlight, ...]:
        return self._list(AnnotationKind.HIGHLIGHT, page_index)

    def notes_for_page(self, page_index: int) -> Tuple[Note, ...]:
        return self._list(AnnotationKind.NOTE, page_index)

    def invalidate_cache(self, kind: Optional[AnnotationKind] = None,
                         page_index: Optional[int] = None) -> None:
        """Forget cached listings, e.g. after another writer touched the store."""
        if kind is None and page_index is None:
            self._cache.clear()
            return
        for key in list(self._cache):
            if (kind is None or key[0] == kind) and (page_index is None or key[1] == page_index):
                del self._cache[key]

    # --- primitive mutations (no undo) ----------------------------------

    def _find(self, kind: AnnotationKind, page_index: int, annotation_id: str) -> Optional[SidecarAnnotation]:
        for annotation in self._list(kind, page_index):
            if annotation.id == annotation_id:
                return annotation
        return None

    def _merge_cached(self, kind: AnnotationKind, page_index: int,
                      removed_ids, added: Sequence[SidecarAnnotation] = ()) -> None:
        """
        Apply a persisted change to the cached page listing. Pages that are not
        cached are left alone and load from the store on the next read.
        """
        key = (kind, page_index)
        cached = self._cache.get(key)
        if cached is None:
            return
        current = [a for a in cached if a.id not in removed_ids]
        current.extend(added)
        current.sort(key=_sort_key)
        self._cache[key] = tuple(current)

    def _put(self, annotation: SidecarAnnotation) -> None:
        """Persist one row and merge it into the cached page listing."""
        self.store.insert(self.doc_id, annotation)
        self._merge_cached(annotation.kind, annotation.page_index, {annotation.id}, [annotation])

    def _put_many(self, kind: AnnotationKind, page_index: int, annotations: List[SidecarAnnotation]) -> None:
        self.store.insert_many(self.doc_id, annotations)
        self._merge_cached(kind, page_index, {a.id for a in annotations}, annotations)

    def _drop(self, kind: AnnotationKind, page_index: int, annotation_id: str) -> Optional[SidecarAnnotation]:
        """Delete one row if it is listed on the page; returns the removed value."""
        removed = self._find(kind, page_index, annotation_id)
        if removed is None:
            return None
        self.store.delete(self.doc_id, kind, annotation_id)
        self._merge_cached(kind, page_index, {annotation_id})
        return removed

    # --- undo -------------------------------------------------------------

    def _push_undo(self, op: UndoOp) -> None:
        self._undo.append(op)

    def has_undo(self) -> bool:
        return bool(self._undo)

    @property
    def undo_depth(self) -> int:
        return len(self._undo)

    def undo_last(self) -> bool:
        """Revert the most recent edit. There is no redo."""
        if not self._undo:
            return False
        op = self._undo.pop()
        op()
        return True

    def _record_added(self, added: SidecarAnnotation) -> None:
        self._push_undo(lambda: self._drop(added.kind, added.page_index, added.id))

    def _record_removed(self, removed: SidecarAnnotation) -> None:
        self._push_undo(lambda: self._put(removed))

    def _record_updated(self, prior: SidecarAnnotation) -> None:
        self._push_undo(lambda: self._put(prior))

    def _update(self, kind: AnnotationKind, page_index: int, annotation_id: str, **changes):
        if not changes:
            return None
        prior = self._find(kind, page_index, annotation_id)
        if prior is None:
            return None
        updated = replace(prior, **changes)
        self._put(updated)
        self._record_updated(prior)
        return updated

    # --- ink --------------------------------------------------------------

    def add_ink_from_arcs(self, page_index: int, arcs: Sequence[Sequence[fitz.Point]],
                          color: int = 0xFF000000, thickness: float = 1.0,
                          created_at_ms: Optional[int] = None) -> List[InkStroke]:
        """
        Store one stroke per arc. Arcs with fewer than two points are skipped.
        The whole batch is undone by a single ``undo_last``.
        """
        created = now_ms() if created_at_ms is None else created_at_ms
        strokes = [
            InkStroke(
                id=new_annotation_id(),
                page_index=page_index,
                layout_profile_id=self.layout_profile_id,
                created_at_ms=created,
                color=color,
                thickness=thickness,
                points=arc,
            )
            for arc in arcs
            if arc is not None and len(arc) >= 2
        ]
        if not strokes:
            return []
        self._put_many(AnnotationKind.INK, page_index, strokes)
        ids = [s.id for s in strokes]

        def undo():
            for stroke_id in ids:
                self._drop(AnnotationKind.INK, page_index, stroke_id)

        self._push_undo(undo)
        return strokes

    def add_ink(self, page_index: int, points: Sequence[fitz.Point],
                color: int = 0xFF000000, thickness: float = 1.0,
                created_at_ms: Optional[int] = None) -> Optional[InkStroke]:
        """Store a single stroke; returns None when it has fewer than two points."""
        strokes = self.add_ink_from_arcs(page_index, [points], color, thickness, created_at_ms)
        return strokes[0] if strokes else None

    def remove_ink(self, page_index: int, stroke_id: str) -> Optional[InkStroke]:
        removed = self._drop(AnnotationKind.INK, page_index, stroke_id)
        if removed is not None:
            self._record_removed(removed)
        return removed

    def update_ink_style(self, page_index: int, stroke_id: str,
                         color: Optional[int] = None, thickness: Optional[float] = None) -> Optional[InkStroke]:
        changes = {}
        if color is not None:
            changes["color"] = color
        if thickness is not None:
            changes["thickness"] = thickness
        return self._update(AnnotationKind.INK, page_index, stroke_id, **changes)

    def replace_ink(self, page_index: int, stroke_id: str,
                    arcs: Sequence[Sequence[fitz.Point]]) -> Optional[List[InkStroke]]:
        """
        Swap a stroke for the pieces left after erasing part of it. Pieces keep
        the stroke's style and creation time; arcs with fewer than two points
        are dropped, so an empty result means the stroke was erased entirely.

        One ``undo_last`` removes the pieces and restores the original stroke.
        Returns None when the stroke is not listed on the page.
        """
        original = self._find(AnnotationKind.INK, page_index, stroke_id)
        if original is None:
            return None
        pieces = [
            InkStroke(
                id=new_annotation_id(),
                page_index=page_index,
                layout_profile_id=original.layout_profile_id,
                created_at_ms=original.created_at_ms,
                color=original.color,
                thickness=original.thickness,
                points=arc,
            )
            for arc in arcs
            if arc is not None and len(arc) >= 2
        ]
        # Pieces are written before the original is deleted
        if pieces:
            self._put_many(AnnotationKind.INK, page_index, pieces)
        self._drop(AnnotationKind.INK, page_index, stroke_id)
        self._record_ink_replaced(original, pieces)
        return pieces

    def _record_ink_replaced(self, original: InkStroke, pieces: List[InkStroke]) -> None:
        piece_ids = [p.id for p in pieces]

        def undo():
            for piece_id in piece_ids:
                self._drop(AnnotationKind.INK, original.page_index, piece_id)
            self._put(original)

        self._push_undo(undo)

    # --- highlights -------------------------------------------------------

    def _anchor_for(self, quote: Optional[str], quad_points: Sequence[fitz.Point],
                    page_text_lines: Optional[Sequence[Sequence[Word]]]):
        """Prefix, suffix and word range of ``quote`` at the selected position."""
        normalized = normalize_whitespace(quote)
        if normalized is None or not page_text_lines:
            return None, None, None, None
        selection = bounds_from_quads(quad_points)
        if selection is None:
            return None, None, None, None
        index = build_index(page_text_lines)
        match = best_match_by_bounds(index, normalized, selection)
        if match is None:
            logger.debug("Quote not found on page text; highlight stored without context")
            return None, None, None, None

        context = self.config.context_chars
        word_range = word_range_for_char_range(index, match.start, match.end)
        return (
            prefix_context(index, match.start, context),
            suffix_context(index, match.end, context),
            word_range.start_word if word_range else None,
            word_range.end_word_exclusive if word_range else None,
        )

    def add_highlight(self, page_index: int, highlight_type: HighlightType,
                      quad_points: Sequence[fitz.Point], color: int = 0xFFFFFF00,
                      opacity: float = 1.0, quote: Optional[str] = None,
                      page_text_lines: Optional[Sequence[Sequence[Word]]] = None,
                      doc_progress: Optional[float] = None,
                      reflow_location: Optional[int] = None,
                      created_at_ms: Optional[int] = None) -> Highlight:
        """
        Store a new highlight.

        When both ``quote`` and the page's text lines (under the current
        layout) are given, the quote is located at the selected position and
        its surrounding text and word range are stored for later re-anchoring.
        """
        prefix, suffix, start_word, end_word = self._anchor_for(quote, quad_points, page_text_lines)
        highlight = Highlight(
            id=new_annotation_id(),
            page_index=page_index,
            layout_profile_id=self.layout_profile_id,
            created_at_ms=now_ms() if created_at_ms is None else created_at_ms,
            highlight_type=highlight_type,
            color=color,
            opacity=opacity,
            quad_points=quad_points,
            quote=quote,
            quote_prefix=prefix,
            quote_suffix=suffix,
            doc_progress=doc_progress,
            reflow_location=reflow_location,
            anchor_start_word=start_word,
            anchor_end_word_exclusive=end_word,
        )
        self._put(highlight)
        self._record_added(highlight)
        return highlight

    def remove_highlight(self, page_index: int, highlight_id: str) -> Optional[Highlight]:
        removed = self._drop(AnnotationKind.HIGHLIGHT, page_index, highlight_id)
        if removed is not None:
            self._record_removed(removed)
        return removed

    def update_highlight_style(self, page_index: int, highlight_id: str,
                               color: Optional[int] = None, opacity: Optional[float] = None,
                               highlight_type: Optional[HighlightType] = None) -> Optional[Highlight]:
        changes = {}
        if color is not None:
            changes["color"] = color
        if opacity is not None:
            changes["opacity"] = opacity
        if highlight_type is not None:
            changes["highlight_type"] = highlight_type
        return self._update(AnnotationKind.HIGHLIGHT, page_index, highlight_id, **changes)

    def reanchor_highlights_for_current_layout(self, page_text: PageTextProvider,
                                               cancel_event: Optional[threading.Event] = None) -> ReanchorReport:
        """Move highlights made under other layouts into the current one."""
        if self.layout_profile_id is None:
            return ReanchorReport()
        report = self.reanchorer.reanchor(self.doc_id, self.layout_profile_id, page_text, cancel_event)
        if report.updated:
            self.invalidate_cache(AnnotationKind.HIGHLIGHT)
        return report

    # --- notes ------------------------------------------------------------

    def add_note(self, page_index: int, bounds: fitz.Rect, text: Optional[str] = None,
                 created_at_ms: Optional[int] = None) -> Note:
        rect = fitz.Rect(bounds)
        if rect_is_empty(rect):
            raise ValueError(f"note bounds must not be empty: {tuple(rect)}")
        note = Note(
            id=new_annotation_id(),
            page_index=page_index,
            layout_profile_id=self.layout_profile_id,
            created_at_ms=now_ms() if created_at_ms is None else created_at_ms,
            bounds=rect,
            text=text,
            font_size=_clamp(rect.height * 0.18, 10.0, 18.0),
        )
        self._put(note)
        self._record_added(note)
        return note

    def remove_note(self, page_index: int, note_id: str) -> Optional[Note]:
        removed = self._drop(AnnotationKind.NOTE, page_index, note_id)
        if removed is not None:
            self._record_removed(removed)
        return removed

    def update_note_bounds(self, page_index: int, note_id: str, bounds: fitz.Rect,
                           mark_user_resized: bool = False) -> Optional[Note]:
        prior = self._find(AnnotationKind.NOTE, page_index, note_id)
        if prior is None:
            return None
        return self._update(AnnotationKind.NOTE, page_index, note_id,
                            bounds=fitz.Rect(bounds),
                            user_resized=prior.user_resized or mark_user_resized)

    def update_note_text(self, page_index: int, note_id: str, text: Optional[str]) -> Optional[Note]:
        return self._update(AnnotationKind.NOTE, page_index, note_id, text=text)

    def update_note_style(self, page_index: int, note_id: str, color: int, font_size: float) -> Optional[Note]:
        return self._update(AnnotationKind.NOTE, page_index, note_id, color=color, font_size=font_size)

    def update_note_font_family(self, page_index: int, note_id: str, font_family: int) -> Optional[Note]:
        return self._update(AnnotationKind.NOTE, page_index, note_id, font_family=font_family)

    def update_note_font_style_flags(self, page_index: int, note_id: str, flags: int) -> Optional[Note]:
        return self._update(AnnotationKind.NOTE, page_index, note_id, font_style_flags=flags & 0x0F)

    def update_note_paragraph(self, page_index: int, note_id: str,
                              line_height: float, text_indent_pt: float) -> Optional[Note]:
        return self._update(AnnotationKind.NOTE, page_index, note_id,
                            line_height=line_height, text_indent_pt=text_indent_pt)

    def update_note_background(self, page_index: int, note_id: str,
                               color: int, opacity: float) -> Optional[Note]:
        return self._update(AnnotationKind.NOTE, page_index, note_id,
                            background_color=color,
                            background_opacity=_clamp(opacity, 0.0, 1.0))

    def update_note_border(self, page_index: int, note_id: str, color: int,
                           width_pt: float, dashed: bool, radius_pt: float) -> Optional[Note]:
        return self._update(AnnotationKind.NOTE, page_index, note_id,
                            border_color=color,
                            border_width_pt=_clamp(width_pt, 0.0, 24.0),
                            border_style=1 if dashed else 0,
                            border_radius_pt=_clamp(radius_pt, 0.0, 48.0))

    def update_note_locks(self, page_index: int, note_id: str,
                          lock_position_size: bool, lock_contents: bool) -> Optional[Note]:
        return self._update(AnnotationKind.NOTE, page_index, note_id,
                            lock_position_size=lock_position_size, lock_contents=lock_contents)

    def update_note_rotation(self, page_index: int, note_id: str, rotation_deg: int) -> Optional[Note]:
        return self._update(AnnotationKind.NOTE, page_index, note_id,
                            rotation_deg=snap_rotation(rotation_deg))

    # --- probes -----------------------------------------------------------

    def has_any_ink(self) -> bool:
        try:
            return self.store.has_any(self.doc_id, AnnotationKind.INK)
        except SQLAlchemyError as e:
            logger.warning(f"Ink probe failed for {self.doc_id}: {e}")
            return False

    def has_any_annotations_in_current_layout(self) -> bool:
        try:
            return self.store.has_any_in_layout(self.doc_id, self.layout_profile_id)
        except SQLAlchemyError as e:
            logger.warning(f"Layout probe failed for {self.doc_id}: {e}")
            return False

    def has_annotations_in_other_layouts(self) -> bool:
        """True when rows exist under a pagination other than the current one."""
        if self.layout_profile_id is None:
            return False
        try:
            return self.store.has_any_outside_layout(self.doc_id, self.layout_profile_id)
        except SQLAlchemyError as e:
            logger.warning(f"Layout probe failed for {self.doc_id}: {e}")
            return False

    # --- bundles ----------------------------------------------------------

    def export_bundle(self, stream) -> None:
        """Write every annotation of this document, all layouts, as bundle JSON."""
        write_bundle_json(self.doc_id, self.store, stream)

    def import_bundle(self, bundle: Bundle) -> ImportStats:
        """
        Import ``bundle`` into this document (its own doc id is ignored).
        Cached listings and the undo stack are dropped for any non-empty bundle,
        even when the write fails.
        """
        if bundle.total == 0:
            return ImportStats()
        try:
            return import_into_doc(self.doc_id, self.store, bundle)
        finally:
            self._cache.clear()
            self._undo.clear()
