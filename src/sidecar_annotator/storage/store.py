"""
Annotation Store - durable table-per-kind persistence of sidecar annotations

Rows are keyed by (doc_id, page_index, layout_profile_id). Inserting a row
whose id already exists replaces it, so writes are idempotent and the
re-anchorer can rewrite highlights in place.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Union

import fitz  # PyMuPDF
from sqlalchemy import and_, create_engine, delete, event, exists, or_, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool

from ..anchoring.point_codec import decode_points, encode_points
from ..models import (
    AnnotationKind,
    Highlight,
    HighlightType,
    InkStroke,
    Note,
    NOTE_DEFAULT_BACKGROUND_COLOR,
    NOTE_DEFAULT_BACKGROUND_OPACITY,
    NOTE_DEFAULT_BORDER_RADIUS_PT,
    NOTE_DEFAULT_BORDER_STYLE,
    NOTE_DEFAULT_BORDER_WIDTH_PT,
    NOTE_DEFAULT_COLOR,
    NOTE_DEFAULT_FONT_FAMILY,
    NOTE_DEFAULT_FONT_SIZE,
    NOTE_DEFAULT_FONT_STYLE_FLAGS,
    NOTE_DEFAULT_LINE_HEIGHT,
    NOTE_DEFAULT_ROTATION_DEG,
    NOTE_DEFAULT_TEXT_INDENT_PT,
    SidecarAnnotation,
)
from .schema import TABLES, create_or_upgrade_schema

logger = logging.getLogger(__name__)


class AnnotationStore(ABC):
    """Persistence contract used by sessions, the re-anchorer and bundles."""

    @abstractmethod
    def list(self, doc_id: str, kind: AnnotationKind, page_index: int,
             layout_profile_id: Optional[str]) -> List[SidecarAnnotation]:
        """Rows of one kind on one page under one layout, oldest first."""

    @abstractmethod
    def list_all(self, doc_id: str, kind: AnnotationKind) -> List[SidecarAnnotation]:
        """Every row of one kind for a document, all pages and layouts."""

    @abstractmethod
    def insert(self, doc_id: str, annotation: SidecarAnnotation) -> None:
        """Insert or replace (by id) one row."""

    @abstractmethod
    def insert_many(self, doc_id: str, annotations: Iterable[SidecarAnnotation]) -> None:
        """Insert or replace several rows in one transaction."""

    @abstractmethod
    def delete(self, doc_id: str, kind: AnnotationKind, annotation_id: str) -> None:
        ...

    @abstractmethod
    def has_any(self, doc_id: str, kind: Optional[AnnotationKind] = None) -> bool:
        ...

    @abstractmethod
    def has_any_in_layout(self, doc_id: str, layout_profile_id: Optional[str]) -> bool:
        """Rows under ``layout_profile_id``; None means layout-independent rows."""

    @abstractmethod
    def has_any_outside_layout(self, doc_id: str, layout_profile_id: str) -> bool:
        ...

    @abstractmethod
    def migrate_doc_id(self, old_doc_id: str, new_doc_id: str) -> None:
        """Move every row of ``old_doc_id`` to ``new_doc_id`` atomically."""

    def close(self) -> None:
        pass


# --- row conversion -------------------------------------------------------

def _or_default(value, default):
    return default if value is None else value


def _ink_to_row(doc_id: str, stroke: InkStroke) -> Dict:
    return {
        "id": stroke.id,
        "doc_id": doc_id,
        "page_index": stroke.page_index,
        "layout_profile_id": stroke.layout_profile_id,
        "color": stroke.color,
        "thickness": stroke.thickness,
        "created_at_ms": stroke.created_at_ms,
        "points": encode_points(stroke.points),
    }


def _ink_from_row(row) -> Optional[InkStroke]:
    points = decode_points(row.points)
    if points is None:
        return None
    return InkStroke(
        id=row.id,
        page_index=row.page_index,
        layout_profile_id=row.layout_profile_id,
        created_at_ms=row.created_at_ms,
        color=row.color,
        thickness=row.thickness,
        points=points,
    )


def _highlight_to_row(doc_id: str, highlight: Highlight) -> Dict:
    return {
        "id": highlight.id,
        "doc_id": doc_id,
        "page_index": highlight.page_index,
        "layout_profile_id": highlight.layout_profile_id,
        "type_ordinal": highlight.highlight_type.value,
        "color": highlight.color,
        "opacity": highlight.opacity,
        "created_at_ms": highlight.created_at_ms,
        "quad_points": encode_points(highlight.quad_points),
        "quote": highlight.quote,
        "quote_prefix": highlight.quote_prefix,
        "quote_suffix": highlight.quote_suffix,
        "doc_progress": highlight.doc_progress,
        "reflow_location": highlight.reflow_location,
        "anchor_start_word": highlight.anchor_start_word,
        "anchor_end_word_exclusive": highlight.anchor_end_word_exclusive,
    }


def _highlight_from_row(row) -> Optional[Highlight]:
    quads = decode_points(row.quad_points)
    if quads is None or len(quads) % 4 != 0:
        return None
    return Highlight(
        id=row.id,
        page_index=row.page_index,
        layout_profile_id=row.layout_profile_id,
        created_at_ms=row.created_at_ms,
        highlight_type=HighlightType.from_ordinal(row.type_ordinal) or HighlightType.HIGHLIGHT,
        color=row.color,
        opacity=row.opacity,
        quad_points=quads,
        quote=row.quote,
        quote_prefix=row.quote_prefix,
        quote_suffix=row.quote_suffix,
        doc_progress=row.doc_progress,
        reflow_location=row.reflow_location,
        anchor_start_word=row.anchor_start_word,
        anchor_end_word_exclusive=row.anchor_end_word_exclusive,
    )


def _note_to_row(doc_id: str, note: Note) -> Dict:
    return {
        "id": note.id,
        "doc_id": doc_id,
        "page_index": note.page_index,
        "layout_profile_id": note.layout_profile_id,
        "left": note.bounds.x0,
        "top": note.bounds.y0,
        "right": note.bounds.x1,
        "bottom": note.bounds.y1,
        "text": note.text,
        "created_at_ms": note.created_at_ms,
        "color": note.color,
        "font_family": note.font_family,
        "font_style_flags": note.font_style_flags,
        "font_size": note.font_size,
        "line_height": note.line_height,
        "text_indent_pt": note.text_indent_pt,
        "user_resized": note.user_resized,
        "background_color": note.background_color,
        "background_opacity": note.background_opacity,
        "border_color": note.border_color,
        "border_width_pt": note.border_width_pt,
        "border_style": note.border_style,
        "border_radius_pt": note.border_radius_pt,
        "lock_position_size": note.lock_position_size,
        "lock_contents": note.lock_contents,
        "rotation_deg": note.rotation_deg,
    }


def _note_from_row(row) -> Optional[Note]:
    color = _or_default(row.color, NOTE_DEFAULT_COLOR)
    return Note(
        id=row.id,
        page_index=row.page_index,
        layout_profile_id=row.layout_profile_id,
        created_at_ms=row.created_at_ms,
        bounds=fitz.Rect(row.left, row.top, row.right, row.bottom),
        text=row.text,
        color=color,
        font_family=_or_default(row.font_family, NOTE_DEFAULT_FONT_FAMILY),
        font_style_flags=_or_default(row.font_style_flags, NOTE_DEFAULT_FONT_STYLE_FLAGS),
        font_size=_or_default(row.font_size, NOTE_DEFAULT_FONT_SIZE),
        line_height=_or_default(row.line_height, NOTE_DEFAULT_LINE_HEIGHT),
        text_indent_pt=_or_default(row.text_indent_pt, NOTE_DEFAULT_TEXT_INDENT_PT),
        user_resized=bool(row.user_resized),
        background_color=_or_default(row.background_color, NOTE_DEFAULT_BACKGROUND_COLOR),
        background_opacity=_or_default(row.background_opacity, NOTE_DEFAULT_BACKGROUND_OPACITY),
        # Older rows have no border color; it follows the text color
        border_color=_or_default(row.border_color, color),
        border_width_pt=_or_default(row.border_width_pt, NOTE_DEFAULT_BORDER_WIDTH_PT),
        border_style=_or_default(row.border_style, NOTE_DEFAULT_BORDER_STYLE),
        border_radius_pt=_or_default(row.border_radius_pt, NOTE_DEFAULT_BORDER_RADIUS_PT),
        lock_position_size=bool(row.lock_position_size),
        lock_contents=bool(row.lock_contents),
        rotation_deg=_or_default(row.rotation_deg, NOTE_DEFAULT_ROTATION_DEG),
    )


_TO_ROW = {
    AnnotationKind.INK: _ink_to_row,
    AnnotationKind.HIGHLIGHT: _highlight_to_row,
    AnnotationKind.NOTE: _note_to_row,
}

_FROM_ROW = {
    AnnotationKind.INK: _ink_from_row,
    AnnotationKind.HIGHLIGHT: _highlight_from_row,
    AnnotationKind.NOTE: _note_from_row,
}


def _layout_clause(table, layout_profile_id: Optional[str]):
    if layout_profile_id is None:
        return table.c.layout_profile_id.is_(None)
    return table.c.layout_profile_id == layout_profile_id


def _enable_sqlite_wal(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
    finally:
        cursor.close()


class SqlAnnotationStore(AnnotationStore):
    """
    SQLAlchemy-backed store.

    Accepts a database URL or a ready engine. ``sqlite://`` (in-memory) URLs
    share a single connection so every caller sees the same database.
    """

    def __init__(self, url_or_engine: Union[str, Engine]):
        if isinstance(url_or_engine, Engine):
            self.engine = url_or_engine
            self._owns_engine = False
        else:
            self.engine = self._create_engine(url_or_engine)
            self._owns_engine = True
        self._write_lock = threading.RLock()
        create_or_upgrade_schema(self.engine)

    @staticmethod
    def _create_engine(url: str) -> Engine:
        if url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(url, poolclass=StaticPool,
                                 connect_args={"check_same_thread": False})
        engine = create_engine(url)
        if engine.dialect.name == "sqlite":
            event.listen(engine, "connect", _enable_sqlite_wal)
        return engine

    # --- reads --------------------------------------------------------

    def _rows_to_annotations(self, kind: AnnotationKind, rows) -> List[SidecarAnnotation]:
        out = []
        from_row = _FROM_ROW[kind]
        for row in rows:
            annotation = from_row(row)
            if annotation is None:
                logger.debug(f"Skipping {kind.value} row {row.id}: unreadable point payload")
                continue
            out.append(annotation)
        return out

    def list(self, doc_id: str, kind: AnnotationKind, page_index: int,
             layout_profile_id: Optional[str]) -> List[SidecarAnnotation]:
        table = TABLES[kind]
        stmt = (
            select(table)
            .where(table.c.doc_id == doc_id, table.c.page_index == page_index,
                   _layout_clause(table, layout_profile_id))
            .order_by(table.c.created_at_ms, table.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return self._rows_to_annotations(kind, rows)

    def list_all(self, doc_id: str, kind: AnnotationKind) -> List[SidecarAnnotation]:
        table = TABLES[kind]
        stmt = (
            select(table)
            .where(table.c.doc_id == doc_id)
            .order_by(table.c.created_at_ms, table.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return self._rows_to_annotations(kind, rows)

    def _exists(self, conn: Connection, kind: AnnotationKind, doc_id: str, *clauses) -> bool:
        table = TABLES[kind]
        return bool(conn.execute(select(exists().where(table.c.doc_id == doc_id, *clauses))).scalar())

    def has_any(self, doc_id: str, kind: Optional[AnnotationKind] = None) -> bool:
        kinds = [kind] if kind is not None else list(AnnotationKind)
        with self.engine.connect() as conn:
            return any(self._exists(conn, k, doc_id) for k in kinds)

    def has_any_in_layout(self, doc_id: str, layout_profile_id: Optional[str]) -> bool:
        with self.engine.connect() as conn:
            return any(
                self._exists(conn, k, doc_id, _layout_clause(TABLES[k], layout_profile_id))
                for k in AnnotationKind
            )

    def has_any_outside_layout(self, doc_id: str, layout_profile_id: str) -> bool:
        with self.engine.connect() as conn:
            for k in AnnotationKind:
                column = TABLES[k].c.layout_profile_id
                if self._exists(conn, k, doc_id, or_(column.is_(None), column != layout_profile_id)):
                    return True
        return False

    # --- writes -------------------------------------------------------

    def _upsert(self, conn: Connection, doc_id: str, annotation: SidecarAnnotation) -> None:
        kind = annotation.kind
        table = TABLES[kind]
        row = _TO_ROW[kind](doc_id, annotation)
        if self.engine.dialect.name == "sqlite":
            stmt = sqlite_insert(table).values(**row)
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.id],
                set_={name: stmt.excluded[name] for name in row if name != "id"},
            )
            conn.execute(stmt)
            return
        # Portable fallback for other backends
        result = conn.execute(update(table).where(table.c.id == annotation.id).values(**row))
        if result.rowcount == 0:
            conn.execute(table.insert().values(**row))

    def insert(self, doc_id: str, annotation: SidecarAnnotation) -> None:
        with self._write_lock, self.engine.begin() as conn:
            self._upsert(conn, doc_id, annotation)

    def insert_many(self, doc_id: str, annotations: Iterable[SidecarAnnotation]) -> None:
        annotations = list(annotations)
        if not annotations:
            return
        with self._write_lock, self.engine.begin() as conn:
            for annotation in annotations:
                self._upsert(conn, doc_id, annotation)

    def delete(self, doc_id: str, kind: AnnotationKind, annotation_id: str) -> None:
        table = TABLES[kind]
        with self._write_lock, self.engine.begin() as conn:
            conn.execute(delete(table).where(and_(table.c.doc_id == doc_id, table.c.id == annotation_id)))

    def migrate_doc_id(self, old_doc_id: str, new_doc_id: str) -> None:
        if not old_doc_id or not new_doc_id or old_doc_id == new_doc_id:
            return
        moved = 0
        with self._write_lock, self.engine.begin() as conn:
            for table in TABLES.values():
                result = conn.execute(
                    update(table).where(table.c.doc_id == old_doc_id).values(doc_id=new_doc_id))
                moved += max(0, result.rowcount or 0)
        if moved:
            logger.info(f"Migrated {moved} annotation row(s) from {old_doc_id} to {new_doc_id}")

    def close(self) -> None:
        if self._owns_engine:
            self.engine.dispose()
