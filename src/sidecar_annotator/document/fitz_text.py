"""
PyMuPDF page-text provider

Supplies the re-anchorer and the session with ordered lines of words for a
page, and resolves layout-independent location tokens (PyMuPDF bookmarks) to
page numbers under the current layout of a reflowable document.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import fitz  # PyMuPDF

from ..anchoring.text_index import Word
from .layout_profile import layout_profile_id

logger = logging.getLogger(__name__)


def words_to_lines(words) -> List[List[Word]]:
    """
    Group ``page.get_text("words")`` tuples into lines.

    Each tuple is (x0, y0, x1, y1, word, block_no, line_no, word_no). Lines are
    keyed by (block_no, line_no) and kept in the order they first appear.
    """
    lines: Dict[Tuple[int, int], List[Word]] = {}
    for x0, y0, x1, y1, text, block_no, line_no, *_ in words:
        lines.setdefault((block_no, line_no), []).append(Word(fitz.Rect(x0, y0, x1, y1), text))
    return list(lines.values())


class FitzPageText:
    """Page text and locations of an open PyMuPDF document."""

    def __init__(self, doc: fitz.Document):
        self.doc = doc

    @classmethod
    def open(cls, path: Union[str, Path]) -> "FitzPageText":
        return cls(fitz.open(str(path)))

    def close(self):
        """Close the underlying document"""
        if self.doc is not None:
            self.doc.close()
            self.doc = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def is_reflowable(self) -> bool:
        return bool(self.doc.is_reflowable)

    def page_count(self) -> int:
        return self.doc.page_count

    def text_lines(self, page_index: int) -> List[List[Word]]:
        if page_index < 0 or page_index >= self.doc.page_count:
            return []
        page = self.doc[page_index]
        return words_to_lines(page.get_text("words", sort=True))

    def apply_layout(self, width: float, height: float, font_size: float,
                     margin_scale: float = 1.0, line_spacing: float = 1.0) -> Optional[str]:
        """
        Paginate a reflowable document for the given page size and font size.

        Returns:
            The layout profile id of the new pagination, or None for fixed-layout
            documents, which are left untouched.
        """
        if not self.is_reflowable:
            return None
        self.doc.layout(width=width, height=height, fontsize=font_size)
        profile = layout_profile_id(width, height, font_size, font_size, margin_scale, line_spacing)
        logger.info(f"Laid out document as {profile}: {self.doc.page_count} page(s)")
        return profile

    def location_token(self, page_index: int) -> Optional[int]:
        """Layout-independent bookmark for the start of a page, or None if unsupported."""
        if not self.is_reflowable:
            return None
        location = self.doc.location_from_page_number(page_index)
        return self.doc.make_bookmark(location)

    def page_for_location(self, token: int) -> int:
        if not self.is_reflowable:
            return -1
        try:
            location = self.doc.find_bookmark(token)
            return self.doc.page_number_from_location(location)
        except (ValueError, RuntimeError) as e:
            logger.debug(f"Bookmark {token} not resolvable: {e}")
            return -1

    def doc_progress(self, page_index: int) -> float:
        """Fractional position of a page in the document, in [0, 1]."""
        last = self.doc.page_count - 1
        if last <= 0:
            return 0.0
        return max(0.0, min(1.0, page_index / last))
