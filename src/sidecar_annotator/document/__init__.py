"""Document-side collaborators: page text, identity and layout profile ids."""

from .fitz_text import FitzPageText, words_to_lines
from .identity import DocumentIdentity, compute_doc_id, legacy_doc_id, resolve_identity
from .layout_profile import layout_profile_id, parse_page_size

__all__ = [
    "DocumentIdentity",
    "FitzPageText",
    "compute_doc_id",
    "layout_profile_id",
    "legacy_doc_id",
    "parse_page_size",
    "resolve_identity",
    "words_to_lines",
]
