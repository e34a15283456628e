"""
Shared helpers for tests: synthetic word geometry, an in-memory page-text
provider and a store whose operations can be made to fail
"""

import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import fitz  # PyMuPDF
from sqlalchemy.exc import OperationalError

from sidecar_annotator.anchoring.text_index import Word
from sidecar_annotator.storage.store import SqlAnnotationStore

CHAR_WIDTH = 5.0
WORD_GAP = 5.0
LINE_HEIGHT = 10.0
LINE_PITCH = 12.0


def line_of(text, y=0.0, x=0.0):
    """One line of words laid out left to right, 5pt per character, 5pt gaps."""
    words = []
    for token in text.split():
        width = len(token) * CHAR_WIDTH
        words.append(Word(fitz.Rect(x, y, x + width, y + LINE_HEIGHT), token))
        x += width + WORD_GAP
    return words


def lines_of(*texts):
    """Lines stacked top to bottom, 12pt apart."""
    return [line_of(text, y=i * LINE_PITCH) for i, text in enumerate(texts)]


def union_of(words):
    return fitz.Rect(
        min(w.rect.x0 for w in words),
        min(w.rect.y0 for w in words),
        max(w.rect.x1 for w in words),
        max(w.rect.y1 for w in words),
    )


def quads_for(rect):
    """The four corners of one quad, bottom-left first."""
    return [
        fitz.Point(rect.x0, rect.y1),
        fitz.Point(rect.x1, rect.y1),
        fitz.Point(rect.x1, rect.y0),
        fitz.Point(rect.x0, rect.y0),
    ]


def xy(points):
    """Points as plain tuples, for exact comparisons."""
    return [None if p is None else (p.x, p.y) for p in points]


class FakePageText:
    """
    Page-text provider over in-memory pages.

    ``pages`` is a list of pages, each a list of line strings. ``locations``
    maps location tokens to page indexes.
    """

    def __init__(self, pages, locations=None):
        self.pages = [lines_of(*page) for page in pages]
        self.locations = dict(locations or {})
        self.requested_pages = []

    def page_count(self):
        return len(self.pages)

    def text_lines(self, page_index):
        self.requested_pages.append(page_index)
        return self.pages[page_index]

    def page_for_location(self, token):
        return self.locations.get(token, -1)


class FlakyStore(SqlAnnotationStore):
    """
    In-memory store where ``fail(name, times)`` makes the named store method
    raise ``OperationalError`` for its next ``times`` calls.
    """

    def __init__(self):
        super().__init__("sqlite://")
        self.failures = {}

    def fail(self, operation, times=1):
        self.failures[operation] = times

    def _check(self, operation):
        remaining = self.failures.get(operation, 0)
        if remaining:
            self.failures[operation] = remaining - 1
            raise OperationalError(operation, {}, Exception("database is locked"))

    def list(self, doc_id, kind, page_index, layout_profile_id):
        self._check("list")
        return super().list(doc_id, kind, page_index, layout_profile_id)

    def list_all(self, doc_id, kind):
        self._check("list_all")
        return super().list_all(doc_id, kind)

    def insert(self, doc_id, annotation):
        self._check("insert")
        super().insert(doc_id, annotation)

    def insert_many(self, doc_id, annotations):
        self._check("insert_many")
        super().insert_many(doc_id, annotations)

    def delete(self, doc_id, kind, annotation_id):
        self._check("delete")
        super().delete(doc_id, kind, annotation_id)

    def has_any(self, doc_id, kind=None):
        self._check("has_any")
        return super().has_any(doc_id, kind)

    def has_any_in_layout(self, doc_id, layout_profile_id):
        self._check("has_any_in_layout")
        return super().has_any_in_layout(doc_id, layout_profile_id)

    def has_any_outside_layout(self, doc_id, layout_profile_id):
        self._check("has_any_outside_layout")
        return super().has_any_outside_layout(doc_id, layout_profile_id)

    def migrate_doc_id(self, old_doc_id, new_doc_id):
        self._check("migrate_doc_id")
        super().migrate_doc_id(old_doc_id, new_doc_id)
