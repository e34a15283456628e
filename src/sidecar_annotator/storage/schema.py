"""
SQLAlchemy schema for the sidecar store: one table per annotation kind.

Every table carries (doc_id, page_index, layout_profile_id) and is indexed for
the per-page listing the overlay painter issues on every draw.
"""

import logging

from sqlalchemy import (
    BigInteger, Boolean, Column, Float, Index, Integer, LargeBinary, MetaData,
    String, Table, Text, inspect, text,
)
from sqlalchemy.engine import Engine

from ..models import AnnotationKind

logger = logging.getLogger(__name__)

metadata = MetaData()

ink_strokes = Table(
    "ink_strokes", metadata,
    Column("id", String, primary_key=True),
    Column("doc_id", String, nullable=False),
    Column("page_index", Integer, nullable=False),
    Column("layout_profile_id", String, nullable=True),
    Column("color", BigInteger, nullable=False),
    Column("thickness", Float, nullable=False),
    Column("created_at_ms", BigInteger, nullable=False),
    Column("points", LargeBinary, nullable=False),
    Index("idx_ink_doc_page", "doc_id", "page_index"),
    Index("idx_ink_doc_page_layout", "doc_id", "page_index", "layout_profile_id"),
)

highlights = Table(
    "highlights", metadata,
    Column("id", String, primary_key=True),
    Column("doc_id", String, nullable=False),
    Column("page_index", Integer, nullable=False),
    Column("layout_profile_id", String, nullable=True),
    Column("type_ordinal", Integer, nullable=False),
    Column("color", BigInteger, nullable=False),
    Column("opacity", Float, nullable=False),
    Column("created_at_ms", BigInteger, nullable=False),
    Column("quad_points", LargeBinary, nullable=False),
    Column("quote", Text, nullable=True),
    Column("quote_prefix", Text, nullable=True),
    Column("quote_suffix", Text, nullable=True),
    Column("doc_progress", Float, nullable=True),
    Column("reflow_location", BigInteger, nullable=True),
    Column("anchor_start_word", Integer, nullable=True),
    Column("anchor_end_word_exclusive", Integer, nullable=True),
    Index("idx_hl_doc_page", "doc_id", "page_index"),
    Index("idx_hl_doc_page_layout", "doc_id", "page_index", "layout_profile_id"),
)

notes = Table(
    "notes", metadata,
    Column("id", String, primary_key=True),
    Column("doc_id", String, nullable=False),
    Column("page_index", Integer, nullable=False),
    Column("layout_profile_id", String, nullable=True),
    Column("left", Float, nullable=False),
    Column("top", Float, nullable=False),
    Column("right", Float, nullable=False),
    Column("bottom", Float, nullable=False),
    Column("text", Text, nullable=True),
    Column("created_at_ms", BigInteger, nullable=False),
    Column("color", BigInteger, nullable=True),
    Column("font_family", Integer, nullable=True),
    Column("font_style_flags", Integer, nullable=True),
    Column("font_size", Float, nullable=True),
    Column("line_height", Float, nullable=True),
    Column("text_indent_pt", Float, nullable=True),
    Column("user_resized", Boolean, nullable=True),
    Column("background_color", BigInteger, nullable=True),
    Column("background_opacity", Float, nullable=True),
    Column("border_color", BigInteger, nullable=True),
    Column("border_width_pt", Float, nullable=True),
    Column("border_style", Integer, nullable=True),
    Column("border_radius_pt", Float, nullable=True),
    Column("lock_position_size", Boolean, nullable=True),
    Column("lock_contents", Boolean, nullable=True),
    Column("rotation_deg", Integer, nullable=True),
    Index("idx_note_doc_page", "doc_id", "page_index"),
    Index("idx_note_doc_page_layout", "doc_id", "page_index", "layout_profile_id"),
)

TABLES = {
    AnnotationKind.INK: ink_strokes,
    AnnotationKind.HIGHLIGHT: highlights,
    AnnotationKind.NOTE: notes,
}


def _column_ddl(engine: Engine, column: Column) -> str:
    return f'"{column.name}" {column.type.compile(dialect=engine.dialect)}'


def create_or_upgrade_schema(engine: Engine) -> None:
    """
    Create missing tables and add nullable columns that older databases lack.

    Early databases predate the anchoring and note-style columns; those are
    all nullable, so adding them in place keeps existing rows readable.
    """
    metadata.create_all(engine)

    inspector = inspect(engine)
    for table in TABLES.values():
        existing = {col["name"] for col in inspector.get_columns(table.name)}
        missing = [col for col in table.columns if col.name not in existing]
        if not missing:
            continue
        with engine.begin() as conn:
            for column in missing:
                if not column.nullable:
                    logger.warning(f"Cannot add required column {table.name}.{column.name} in place")
                    continue
                conn.execute(text(f'ALTER TABLE "{table.name}" ADD COLUMN {_column_ddl(engine, column)}'))
                logger.info(f"Added column {table.name}.{column.name}")
