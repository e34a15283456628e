"""
Sidecar annotation data model.

Three annotation kinds share a common header (id, page, layout profile,
creation time) and carry a kind-specific payload. All values are immutable;
edits produce a new value under the same id via ``dataclasses.replace``.
"""

import math
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Optional, Sequence, Tuple

import fitz  # PyMuPDF


class AnnotationKind(Enum):
    """Closed set of annotation kinds kept in the sidecar store."""

    INK = "ink"
    HIGHLIGHT = "highlight"
    NOTE = "note"


class HighlightType(Enum):
    """Text markup flavour. Stored by ordinal, exported by name."""

    HIGHLIGHT = 0
    UNDERLINE = 1
    STRIKEOUT = 2

    @classmethod
    def from_name(cls, name: Optional[str], default: "HighlightType" = None) -> "HighlightType":
        try:
            return cls[str(name).upper()]
        except KeyError:
            return default if default is not None else cls.HIGHLIGHT

    @classmethod
    def from_ordinal(cls, ordinal: int) -> Optional["HighlightType"]:
        for member in cls:
            if member.value == ordinal:
                return member
        return None


def now_ms() -> int:
    return int(time.time() * 1000)


def new_annotation_id() -> str:
    return str(uuid.uuid4())


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _freeze_points(points: Optional[Sequence]) -> Tuple[Optional[fitz.Point], ...]:
    if points is None:
        return ()
    frozen = []
    for p in points:
        if p is None:
            frozen.append(None)
        elif isinstance(p, fitz.Point):
            frozen.append(p)
        else:
            frozen.append(fitz.Point(p[0], p[1]))
    return tuple(frozen)


@dataclass(frozen=True)
class SidecarAnnotation:
    """Fields common to every sidecar annotation kind."""

    kind: ClassVar[AnnotationKind]

    id: str
    page_index: int
    layout_profile_id: Optional[str]
    created_at_ms: int


@dataclass(frozen=True)
class InkStroke(SidecarAnnotation):
    """Freehand stroke; at least two points make a visible stroke."""

    kind: ClassVar[AnnotationKind] = AnnotationKind.INK

    color: int = 0xFF000000
    thickness: float = 1.0
    points: Tuple[Optional[fitz.Point], ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "points", _freeze_points(self.points))


@dataclass(frozen=True)
class Highlight(SidecarAnnotation):
    """
    Text markup with an optional text-quote anchor.

    ``quad_points`` holds one quad (4 corner points: bottom-left, bottom-right,
    top-right, top-left) per covered text line.
    """

    kind: ClassVar[AnnotationKind] = AnnotationKind.HIGHLIGHT

    highlight_type: HighlightType = HighlightType.HIGHLIGHT
    color: int = 0xFFFFFF00
    opacity: float = 1.0
    quad_points: Tuple[Optional[fitz.Point], ...] = ()
    quote: Optional[str] = None
    quote_prefix: Optional[str] = None
    quote_suffix: Optional[str] = None
    doc_progress: Optional[float] = None
    reflow_location: Optional[int] = None
    anchor_start_word: Optional[int] = None
    anchor_end_word_exclusive: Optional[int] = None

    def __post_init__(self):
        quads = _freeze_points(self.quad_points)
        if len(quads) % 4 != 0:
            raise ValueError(f"quad point count must be a multiple of 4, got {len(quads)}")
        object.__setattr__(self, "quad_points", quads)

        opacity = float(self.opacity)
        object.__setattr__(self, "opacity", _clamp(opacity, 0.0, 1.0) if math.isfinite(opacity) else 1.0)

        progress = self.doc_progress
        if progress is not None:
            progress = float(progress)
            if not math.isfinite(progress) or progress < 0.0 or progress > 1.0:
                progress = None
        object.__setattr__(self, "doc_progress", progress)

    @property
    def has_context(self) -> bool:
        """True when a prefix or suffix was captured around the quote."""
        return bool(self.quote_prefix) or bool(self.quote_suffix)


# Note presentation defaults (ARGB colors, document units / points)
NOTE_DEFAULT_COLOR = 0xFF111111
NOTE_DEFAULT_FONT_FAMILY = 0  # 0=sans, 1=serif, 2=mono
NOTE_DEFAULT_FONT_STYLE_FLAGS = 0  # bold/italic/underline/strikethrough bits
NOTE_DEFAULT_FONT_SIZE = 12.0
NOTE_DEFAULT_LINE_HEIGHT = 1.2
NOTE_DEFAULT_TEXT_INDENT_PT = 0.0
NOTE_DEFAULT_BACKGROUND_COLOR = 0x00000000
NOTE_DEFAULT_BACKGROUND_OPACITY = 0.0
NOTE_DEFAULT_BORDER_COLOR = NOTE_DEFAULT_COLOR
NOTE_DEFAULT_BORDER_WIDTH_PT = 0.0
NOTE_DEFAULT_BORDER_STYLE = 0  # 0=solid, 1=dashed
NOTE_DEFAULT_BORDER_RADIUS_PT = 0.0
NOTE_DEFAULT_ROTATION_DEG = 0


def normalize_font_family(family: int) -> int:
    return family if family in (1, 2) else 0


def normalize_line_height(line_height: float) -> float:
    if not math.isfinite(line_height) or line_height < 0.5:
        return NOTE_DEFAULT_LINE_HEIGHT
    return min(line_height, 5.0)


def normalize_text_indent(indent: float) -> float:
    if not math.isfinite(indent):
        return NOTE_DEFAULT_TEXT_INDENT_PT
    return _clamp(indent, -144.0, 144.0)


@dataclass(frozen=True)
class Note(SidecarAnnotation):
    """Sticky note / free text box. Style fields are presentation-only."""

    kind: ClassVar[AnnotationKind] = AnnotationKind.NOTE

    bounds: fitz.Rect = field(default_factory=fitz.Rect)
    text: Optional[str] = None
    color: int = NOTE_DEFAULT_COLOR
    font_family: int = NOTE_DEFAULT_FONT_FAMILY
    font_style_flags: int = NOTE_DEFAULT_FONT_STYLE_FLAGS
    font_size: float = NOTE_DEFAULT_FONT_SIZE
    line_height: float = NOTE_DEFAULT_LINE_HEIGHT
    text_indent_pt: float = NOTE_DEFAULT_TEXT_INDENT_PT
    user_resized: bool = False
    background_color: int = NOTE_DEFAULT_BACKGROUND_COLOR
    background_opacity: float = NOTE_DEFAULT_BACKGROUND_OPACITY
    border_color: int = NOTE_DEFAULT_BORDER_COLOR
    border_width_pt: float = NOTE_DEFAULT_BORDER_WIDTH_PT
    border_style: int = NOTE_DEFAULT_BORDER_STYLE
    border_radius_pt: float = NOTE_DEFAULT_BORDER_RADIUS_PT
    lock_position_size: bool = False
    lock_contents: bool = False
    rotation_deg: int = NOTE_DEFAULT_ROTATION_DEG

    def __post_init__(self):
        object.__setattr__(self, "bounds", fitz.Rect(self.bounds))
        object.__setattr__(self, "font_family", normalize_font_family(int(self.font_family)))
        object.__setattr__(self, "font_style_flags", int(self.font_style_flags) & 0x0F)
        object.__setattr__(self, "line_height", normalize_line_height(float(self.line_height)))
        object.__setattr__(self, "text_indent_pt", normalize_text_indent(float(self.text_indent_pt)))


ANNOTATION_TYPES = {
    AnnotationKind.INK: InkStroke,
    AnnotationKind.HIGHLIGHT: Highlight,
    AnnotationKind.NOTE: Note,
}
