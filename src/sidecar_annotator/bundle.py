"""
Bundle Codec - portable JSON export/import of a document's sidecar annotations

A bundle holds every row of one document across all layouts:

    {
      "format": "sidecar-annotator-bundle",
      "version": 1,
      "docId": "...",
      "createdAtEpochMs": 1700000000000,
      "ink": [...], "highlights": [...], "notes": [...]
    }

Point lists travel as base64 of the binary point record. New optional fields
may be added to rows; readers ignore keys they do not know.
"""

import io
import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import fitz  # PyMuPDF

from .anchoring.point_codec import decode_points_b64, encode_points_b64
from .errors import BundleFormatError
from .models import (
    AnnotationKind,
    Highlight,
    HighlightType,
    InkStroke,
    Note,
    NOTE_DEFAULT_BACKGROUND_COLOR,
    NOTE_DEFAULT_BACKGROUND_OPACITY,
    NOTE_DEFAULT_BORDER_COLOR,
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
    now_ms,
)
from .utils.file_utils import decode_text_bytes

logger = logging.getLogger(__name__)

BUNDLE_FORMAT = "sidecar-annotator-bundle"
BUNDLE_VERSION = 1
MIN_SUPPORTED_VERSION = 1


@dataclass
class Bundle:
    """Rows parsed from a bundle, plus per-kind counts of rows that were rejected."""

    doc_id: Optional[str]
    version: int
    ink: List[InkStroke] = field(default_factory=list)
    highlights: List[Highlight] = field(default_factory=list)
    notes: List[Note] = field(default_factory=list)
    skipped: Dict[AnnotationKind, int] = field(
        default_factory=lambda: {kind: 0 for kind in AnnotationKind})

    @property
    def total(self) -> int:
        return len(self.ink) + len(self.highlights) + len(self.notes)


@dataclass(frozen=True)
class ImportStats:
    ink_count: int = 0
    highlight_count: int = 0
    note_count: int = 0

    @property
    def total(self) -> int:
        return self.ink_count + self.highlight_count + self.note_count


# --- export ----------------------------------------------------------------

def _ink_to_json(stroke: InkStroke) -> Dict[str, Any]:
    o: Dict[str, Any] = {"id": stroke.id, "pageIndex": stroke.page_index}
    if stroke.layout_profile_id is not None:
        o["layoutProfileId"] = stroke.layout_profile_id
    o["color"] = stroke.color
    o["thickness"] = stroke.thickness
    o["createdAtEpochMs"] = stroke.created_at_ms
    o["pointsB64"] = encode_points_b64(stroke.points)
    return o


def _highlight_to_json(highlight: Highlight) -> Dict[str, Any]:
    o: Dict[str, Any] = {"id": highlight.id, "pageIndex": highlight.page_index}
    if highlight.layout_profile_id is not None:
        o["layoutProfileId"] = highlight.layout_profile_id
    o["type"] = highlight.highlight_type.name
    o["color"] = highlight.color
    o["opacity"] = highlight.opacity
    o["createdAtEpochMs"] = highlight.created_at_ms
    o["quadPointsB64"] = encode_points_b64(highlight.quad_points)
    optional = {
        "quote": highlight.quote,
        "quotePrefix": highlight.quote_prefix,
        "quoteSuffix": highlight.quote_suffix,
        "docProgress01": highlight.doc_progress,
        "reflowLocation": highlight.reflow_location,
        "anchorStartWord": highlight.anchor_start_word,
        "anchorEndWordExclusive": highlight.anchor_end_word_exclusive,
    }
    o.update({key: value for key, value in optional.items() if value is not None})
    return o


# (json key, Note attribute, default) for style fields written only when changed
_NOTE_STYLE_FIELDS = (
    ("fontFamily", "font_family", NOTE_DEFAULT_FONT_FAMILY),
    ("fontStyleFlags", "font_style_flags", NOTE_DEFAULT_FONT_STYLE_FLAGS),
    ("lineHeight", "line_height", NOTE_DEFAULT_LINE_HEIGHT),
    ("textIndentPt", "text_indent_pt", NOTE_DEFAULT_TEXT_INDENT_PT),
    ("backgroundColor", "background_color", NOTE_DEFAULT_BACKGROUND_COLOR),
    ("backgroundOpacity", "background_opacity", NOTE_DEFAULT_BACKGROUND_OPACITY),
    ("borderColor", "border_color", NOTE_DEFAULT_BORDER_COLOR),
    ("borderWidthPt", "border_width_pt", NOTE_DEFAULT_BORDER_WIDTH_PT),
    ("borderStyle", "border_style", NOTE_DEFAULT_BORDER_STYLE),
    ("borderRadiusPt", "border_radius_pt", NOTE_DEFAULT_BORDER_RADIUS_PT),
    ("lockPositionSize", "lock_position_size", False),
    ("lockContents", "lock_contents", False),
    ("rotationDeg", "rotation_deg", NOTE_DEFAULT_ROTATION_DEG),
    ("userResized", "user_resized", False),
)


def _note_to_json(note: Note) -> Dict[str, Any]:
    o: Dict[str, Any] = {"id": note.id, "pageIndex": note.page_index}
    if note.layout_profile_id is not None:
        o["layoutProfileId"] = note.layout_profile_id
    o["bounds"] = {
        "left": note.bounds.x0,
        "top": note.bounds.y0,
        "right": note.bounds.x1,
        "bottom": note.bounds.y1,
    }
    if note.text is not None:
        o["text"] = note.text
    o["createdAtEpochMs"] = note.created_at_ms
    o["color"] = note.color
    o["fontSize"] = note.font_size
    for key, attr, default in _NOTE_STYLE_FIELDS:
        value = getattr(note, attr)
        if value != default:
            o[key] = value
    return o


def build_bundle(doc_id: str, store) -> Dict[str, Any]:
    """Collect every row of ``doc_id`` (all layouts, all kinds) as a bundle dict."""
    return {
        "format": BUNDLE_FORMAT,
        "version": BUNDLE_VERSION,
        "docId": doc_id,
        "createdAtEpochMs": now_ms(),
        "ink": [_ink_to_json(s) for s in store.list_all(doc_id, AnnotationKind.INK)],
        "highlights": [_highlight_to_json(h) for h in store.list_all(doc_id, AnnotationKind.HIGHLIGHT)],
        "notes": [_note_to_json(n) for n in store.list_all(doc_id, AnnotationKind.NOTE)],
    }


def write_bundle_json(doc_id: str, store, stream) -> Dict[str, Any]:
    """Write the bundle of ``doc_id`` as UTF-8 JSON to a text or binary stream."""
    bundle = build_bundle(doc_id, store)
    payload = json.dumps(bundle, ensure_ascii=False)
    if isinstance(stream, io.TextIOBase):
        stream.write(payload)
    else:
        stream.write(payload.encode("utf-8"))
    stream.flush()
    logger.info(f"Exported {len(bundle['ink'])} ink, {len(bundle['highlights'])} highlight(s), "
                f"{len(bundle['notes'])} note(s) for {doc_id}")
    return bundle


# --- import ----------------------------------------------------------------

_INT32_RANGE = (-2**31, 2**31 - 1)
_INT64_RANGE = (-2**63, 2**63 - 1)


def _as_int(value, default: Optional[int], bounds: Tuple[int, int] = _INT64_RANGE) -> Optional[int]:
    """
    Integer field value, or ``default`` when absent or not numeric.

    Raises:
        ValueError: The value is numeric but does not fit the column range.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        result = int(value)
    except OverflowError as e:
        raise ValueError(f"integer out of range: {value!r}") from e
    except (TypeError, ValueError):
        return default
    low, high = bounds
    if not low <= result <= high:
        raise ValueError(f"integer out of range: {value!r}")
    return result


def _as_float(value, default: Optional[float]) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return result if math.isfinite(result) else default


def _as_color(value, default: int) -> int:
    color = _as_int(value, None)
    # Signed 32-bit colors from other writers map onto the same ARGB value
    return default if color is None else color & 0xFFFFFFFF


def _as_str(value) -> Optional[str]:
    return value if isinstance(value, str) else None


def _row_header(o: Dict[str, Any]):
    """(id, page_index, layout_profile_id, created_at_ms) or None when unusable."""
    annotation_id = _as_str(o.get("id"))
    if not annotation_id or not annotation_id.strip():
        return None
    page_index = _as_int(o.get("pageIndex"), -1, _INT32_RANGE)
    if page_index < 0:
        return None
    return annotation_id, page_index, _as_str(o.get("layoutProfileId")), _as_int(o.get("createdAtEpochMs"), 0)


def _ink_from_json(o: Dict[str, Any]) -> Optional[InkStroke]:
    header = _row_header(o)
    if header is None:
        return None
    points = decode_points_b64(_as_str(o.get("pointsB64")))
    if points is None or len(points) < 2:
        return None
    annotation_id, page_index, layout, created = header
    return InkStroke(
        id=annotation_id,
        page_index=page_index,
        layout_profile_id=layout,
        created_at_ms=created,
        color=_as_color(o.get("color"), 0),
        thickness=_as_float(o.get("thickness"), 1.0),
        points=points,
    )


def _highlight_from_json(o: Dict[str, Any]) -> Optional[Highlight]:
    header = _row_header(o)
    if header is None:
        return None
    quads = decode_points_b64(_as_str(o.get("quadPointsB64")))
    if quads is None or len(quads) < 4 or len(quads) % 4 != 0:
        return None
    annotation_id, page_index, layout, created = header
    anchor_start = _as_int(o.get("anchorStartWord"), None, _INT32_RANGE)
    anchor_end = _as_int(o.get("anchorEndWordExclusive"), None, _INT32_RANGE)
    reflow_location = _as_int(o.get("reflowLocation"), None)
    return Highlight(
        id=annotation_id,
        page_index=page_index,
        layout_profile_id=layout,
        created_at_ms=created,
        highlight_type=HighlightType.from_name(_as_str(o.get("type")), HighlightType.HIGHLIGHT),
        color=_as_color(o.get("color"), 0),
        opacity=_as_float(o.get("opacity"), 1.0),
        quad_points=quads,
        quote=_as_str(o.get("quote")),
        quote_prefix=_as_str(o.get("quotePrefix")),
        quote_suffix=_as_str(o.get("quoteSuffix")),
        doc_progress=_as_float(o.get("docProgress01"), None),
        reflow_location=reflow_location if reflow_location is None or reflow_location >= 0 else None,
        anchor_start_word=anchor_start if anchor_start is None or anchor_start >= 0 else None,
        anchor_end_word_exclusive=anchor_end if anchor_end is None or anchor_end >= 0 else None,
    )


def _note_from_json(o: Dict[str, Any]) -> Optional[Note]:
    header = _row_header(o)
    if header is None:
        return None
    b = o.get("bounds")
    if not isinstance(b, dict):
        return None
    annotation_id, page_index, layout, created = header
    return Note(
        id=annotation_id,
        page_index=page_index,
        layout_profile_id=layout,
        created_at_ms=created,
        bounds=fitz.Rect(
            _as_float(b.get("left"), 0.0),
            _as_float(b.get("top"), 0.0),
            _as_float(b.get("right"), 0.0),
            _as_float(b.get("bottom"), 0.0),
        ),
        text=_as_str(o.get("text")),
        color=_as_color(o.get("color"), NOTE_DEFAULT_COLOR),
        font_family=_as_int(o.get("fontFamily"), NOTE_DEFAULT_FONT_FAMILY, _INT32_RANGE),
        font_style_flags=_as_int(o.get("fontStyleFlags"), NOTE_DEFAULT_FONT_STYLE_FLAGS, _INT32_RANGE),
        font_size=_as_float(o.get("fontSize"), NOTE_DEFAULT_FONT_SIZE),
        line_height=_as_float(o.get("lineHeight"), NOTE_DEFAULT_LINE_HEIGHT),
        text_indent_pt=_as_float(o.get("textIndentPt"), NOTE_DEFAULT_TEXT_INDENT_PT),
        user_resized=o.get("userResized") is True,
        background_color=_as_color(o.get("backgroundColor"), NOTE_DEFAULT_BACKGROUND_COLOR),
        background_opacity=_as_float(o.get("backgroundOpacity"), NOTE_DEFAULT_BACKGROUND_OPACITY),
        border_color=_as_color(o.get("borderColor"), NOTE_DEFAULT_BORDER_COLOR),
        border_width_pt=_as_float(o.get("borderWidthPt"), NOTE_DEFAULT_BORDER_WIDTH_PT),
        border_style=_as_int(o.get("borderStyle"), NOTE_DEFAULT_BORDER_STYLE, _INT32_RANGE),
        border_radius_pt=_as_float(o.get("borderRadiusPt"), NOTE_DEFAULT_BORDER_RADIUS_PT),
        lock_position_size=o.get("lockPositionSize") is True,
        lock_contents=o.get("lockContents") is True,
        rotation_deg=_as_int(o.get("rotationDeg"), NOTE_DEFAULT_ROTATION_DEG, _INT32_RANGE),
    )


_ROW_PARSERS = (
    ("ink", AnnotationKind.INK, _ink_from_json),
    ("highlights", AnnotationKind.HIGHLIGHT, _highlight_from_json),
    ("notes", AnnotationKind.NOTE, _note_from_json),
)


def _load_root(data) -> Dict[str, Any]:
    if hasattr(data, "read"):
        data = data.read()
    if isinstance(data, (bytes, bytearray)):
        data = decode_text_bytes(bytes(data))
    try:
        root = json.loads(data)
    except (TypeError, ValueError) as e:
        raise BundleFormatError(f"bundle is not valid JSON: {e}") from e
    if not isinstance(root, dict):
        raise BundleFormatError("bundle root must be a JSON object")
    return root


def read_bundle_json(data) -> Bundle:
    """
    Parse a bundle from bytes, text or a readable stream.

    Raises:
        BundleFormatError: The input is not JSON, or the format/version is not
            one this reader understands. Individual bad rows never raise; they
            are counted in ``Bundle.skipped``.
    """
    root = _load_root(data)

    fmt = root.get("format")
    if fmt != BUNDLE_FORMAT:
        raise BundleFormatError(f"unexpected bundle format: {fmt!r}")
    try:
        version = _as_int(root.get("version"), 0)
    except ValueError:
        version = 0
    if version < MIN_SUPPORTED_VERSION:
        raise BundleFormatError(f"unsupported bundle version: {root.get('version')!r}")

    doc_id = _as_str(root.get("docId"))
    if not doc_id or not doc_id.strip():
        logger.warning("Bundle has no docId; rows can still be imported into an explicit document")
        doc_id = None

    bundle = Bundle(doc_id=doc_id, version=version)
    targets = {
        AnnotationKind.INK: bundle.ink,
        AnnotationKind.HIGHLIGHT: bundle.highlights,
        AnnotationKind.NOTE: bundle.notes,
    }
    for key, kind, parse in _ROW_PARSERS:
        rows = root.get(key)
        if rows is None:
            continue
        if not isinstance(rows, list):
            logger.warning(f"Bundle field '{key}' is not a list; ignored")
            continue
        for o in rows:
            annotation = None
            if isinstance(o, dict):
                try:
                    annotation = parse(o)
                except (TypeError, ValueError) as e:
                    logger.debug(f"Rejected {kind.value} row: {e}")
            if annotation is None:
                bundle.skipped[kind] += 1
                continue
            targets[kind].append(annotation)

    skipped = sum(bundle.skipped.values())
    if skipped:
        logger.warning(f"Skipped {skipped} malformed row(s) while reading bundle")
    return bundle


def import_into_doc(doc_id: str, store, bundle: Bundle) -> ImportStats:
    """Upsert the bundle's rows under ``doc_id`` (the bundle's own doc id is ignored)."""
    if bundle.total == 0:
        return ImportStats()
    # One transaction: a failed write leaves none of the bundle behind
    store.insert_many(doc_id, [*bundle.ink, *bundle.highlights, *bundle.notes])
    stats = ImportStats(len(bundle.ink), len(bundle.highlights), len(bundle.notes))
    logger.info(f"Imported {stats.ink_count} ink, {stats.highlight_count} highlight(s), "
                f"{stats.note_count} note(s) into {doc_id}")
    return stats
