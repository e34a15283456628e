"""
Sidecar Annotator

Overlay annotation engine for documents that cannot be modified in place:
text-quote anchoring of highlights, re-anchoring after reflow relayouts,
durable per-document storage and portable JSON bundles.
"""

__version__ = "1.0.0"
__license__ = "GPL-3.0-or-later"

from .models import (
    AnnotationKind,
    Highlight,
    HighlightType,
    InkStroke,
    Note,
    SidecarAnnotation,
)
from .session import AnnotationSession
from .storage.store import AnnotationStore, SqlAnnotationStore

__all__ = [
    "__version__",
    "__license__",
    "AnnotationKind",
    "AnnotationSession",
    "AnnotationStore",
    "Highlight",
    "HighlightType",
    "InkStroke",
    "Note",
    "SidecarAnnotation",
    "SqlAnnotationStore",
]
