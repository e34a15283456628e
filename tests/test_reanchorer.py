"""
Unit tests for relayout re-anchoring
"""

import threading

import pytest

from page_text_helpers import FakePageText, FlakyStore, lines_of, quads_for, union_of, xy

from sidecar_annotator.anchoring.reanchorer import (
    RelayoutReanchorer,
    ReanchorReport,
    candidate_pages,
    estimate_target_page,
)
from sidecar_annotator.config import SidecarConfig
from sidecar_annotator.models import AnnotationKind, Highlight, HighlightType
from sidecar_annotator.storage.store import SqlAnnotationStore

DOC = "sha256:doc"
OLD_LAYOUT = "w4000_h6000_em1100_f110_m100_l100"
NEW_LAYOUT = "w3000_h5000_em1400_f140_m100_l100"


@pytest.fixture
def store():
    s = SqlAnnotationStore("sqlite://")
    yield s
    s.close()


def _highlight(id="h1", page_index=0, quote="quick brown", prefix="The ", suffix=" fox",
               anchor_start_word=1, **kwargs):
    return Highlight(
        id=id,
        page_index=page_index,
        layout_profile_id=kwargs.pop("layout_profile_id", OLD_LAYOUT),
        created_at_ms=kwargs.pop("created_at_ms", 1000),
        highlight_type=HighlightType.HIGHLIGHT,
        quad_points=quads_for(union_of(lines_of("The quick brown fox")[0][1:3])),
        quote=quote,
        quote_prefix=prefix,
        quote_suffix=suffix,
        anchor_start_word=anchor_start_word,
        anchor_end_word_exclusive=None if anchor_start_word is None else anchor_start_word + 2,
        **kwargs,
    )


def test_candidate_pages_order():
    assert list(candidate_pages(5, 10, 2)) == [(5, 0), (4, 1), (6, 1), (3, 2), (7, 2)]


def test_candidate_pages_clipped_to_document():
    assert list(candidate_pages(0, 3, 48)) == [(0, 0), (1, 1), (2, 2)]
    assert list(candidate_pages(9, 3, 1)) == [(2, 0), (1, 1)]
    assert list(candidate_pages(0, 0, 5)) == []


def test_estimate_prefers_location_then_progress_then_page():
    page_text = FakePageText([["x"]] * 11, locations={77: 9})

    assert estimate_target_page(_highlight(reflow_location=77, doc_progress=0.1), 11, page_text) == 9
    assert estimate_target_page(_highlight(reflow_location=5, doc_progress=0.5), 11, page_text) == 5
    assert estimate_target_page(_highlight(page_index=3), 11, page_text) == 3
    assert estimate_target_page(_highlight(page_index=40), 11, page_text) == 10


def test_reanchor_finds_quote_with_matching_context(store):
    store.insert(DOC, _highlight())
    page_text = FakePageText([
        ["A quick brown dog."],
        ["Lorem. The quick brown fox runs."],
        ["Nothing to see here."],
    ])

    report = RelayoutReanchorer(store).reanchor(DOC, NEW_LAYOUT, page_text)

    assert (report.updated, report.rejected, report.skipped) == (1, 0, 0)
    [moved] = store.list_all(DOC, AnnotationKind.HIGHLIGHT)
    assert moved.id == "h1"
    assert moved.page_index == 1
    assert moved.layout_profile_id == NEW_LAYOUT
    # "quick brown" follows "Lorem. The " on page 1: x 55..110
    expected = union_of(page_text.pages[1][0][2:4])
    assert xy(moved.quad_points) == xy(quads_for(expected))
    assert moved.quote == "quick brown"
    assert moved.quote_prefix == "The "


def test_weak_context_is_rejected_and_row_kept(store):
    original = _highlight()
    store.insert(DOC, original)
    page_text = FakePageText([["A quick brown dog."]])

    report = RelayoutReanchorer(store).reanchor(DOC, NEW_LAYOUT, page_text)

    assert (report.updated, report.rejected) == (0, 1)
    [kept] = store.list_all(DOC, AnnotationKind.HIGHLIGHT)
    assert kept.layout_profile_id == OLD_LAYOUT
    assert xy(kept.quad_points) == xy(original.quad_points)


def test_quote_without_context_accepts_any_occurrence(store):
    store.insert(DOC, _highlight(prefix=None, suffix=None, anchor_start_word=None))
    page_text = FakePageText([["A quick brown dog."]])

    report = RelayoutReanchorer(store).reanchor(DOC, NEW_LAYOUT, page_text)

    assert report.updated == 1


def test_highlights_without_quote_or_in_layout_are_left_alone(store):
    store.insert(DOC, _highlight(id="no-quote", quote=None))
    store.insert(DOC, _highlight(id="current", layout_profile_id=NEW_LAYOUT))
    page_text = FakePageText([["The quick brown fox"]])

    report = RelayoutReanchorer(store).reanchor(DOC, NEW_LAYOUT, page_text)

    assert (report.updated, report.skipped) == (0, 1)
    assert page_text.requested_pages == []


def test_reanchor_never_deletes_rows(store):
    for i in range(4):
        store.insert(DOC, _highlight(id=f"h{i}", created_at_ms=i, quote="quick brown" if i % 2 else "absent"))
    page_text = FakePageText([["The quick brown fox"]])

    RelayoutReanchorer(store).reanchor(DOC, NEW_LAYOUT, page_text)

    ids = [h.id for h in store.list_all(DOC, AnnotationKind.HIGHLIGHT)]
    assert ids == ["h0", "h1", "h2", "h3"]


def test_search_radius_is_bounded(store):
    store.insert(DOC, _highlight(page_index=0))
    pages = [["filler"]] * 6 + [["The quick brown fox"]]
    page_text = FakePageText(pages)

    config = SidecarConfig(reanchor_radius_pages=3)
    report = RelayoutReanchorer(store, config).reanchor(DOC, NEW_LAYOUT, page_text)

    assert report.rejected == 1
    assert sorted(page_text.requested_pages) == [0, 1, 2, 3]


def test_page_index_built_once_per_pass(store):
    store.insert(DOC, _highlight(id="a", created_at_ms=1))
    store.insert(DOC, _highlight(id="b", created_at_ms=2))
    page_text = FakePageText([["The quick brown fox"], ["filler"]])

    RelayoutReanchorer(store).reanchor(DOC, NEW_LAYOUT, page_text)

    assert sorted(page_text.requested_pages) == [0, 1]


def test_cancelled_pass_stops_before_pages(store):
    store.insert(DOC, _highlight())
    page_text = FakePageText([["The quick brown fox"]])
    cancel = threading.Event()
    cancel.set()

    report = RelayoutReanchorer(store).reanchor(DOC, NEW_LAYOUT, page_text, cancel_event=cancel)

    assert report.cancelled
    assert report.updated == 0
    assert page_text.requested_pages == []
    [kept] = store.list_all(DOC, AnnotationKind.HIGHLIGHT)
    assert kept.layout_profile_id == OLD_LAYOUT


def test_empty_document_or_layout_is_noop(store):
    store.insert(DOC, _highlight())
    assert RelayoutReanchorer(store).reanchor(DOC, NEW_LAYOUT, FakePageText([])).updated == 0
    assert RelayoutReanchorer(store).reanchor(DOC, "", FakePageText([["x"]])).updated == 0


def test_listing_failure_gives_empty_report():
    store = FlakyStore()
    try:
        store.insert(DOC, _highlight())
        store.fail("list_all")
        page_text = FakePageText([["Lorem. The quick brown fox runs."]])

        report = RelayoutReanchorer(store).reanchor(DOC, NEW_LAYOUT, page_text)

        assert report == ReanchorReport()
        assert page_text.requested_pages == []
        [kept] = store.list_all(DOC, AnnotationKind.HIGHLIGHT)
        assert kept.layout_profile_id == OLD_LAYOUT
    finally:
        store.close()
