"""
Text anchoring for sidecar highlights: point codec, page text index,
quote matching and relayout re-anchoring.
"""

from .point_codec import decode_points, encode_points
from .quote_matcher import (
    ContextScorer,
    LongestContextScorer,
    QuoteMatch,
    best_match_by_bounds,
    best_match_by_context,
    best_match_by_context_and_word_anchor,
)
from .reanchorer import PageTextProvider, ReanchorReport, RelayoutReanchorer, candidate_pages
from .text_index import PageTextIndex, Word, WordRef, build_index

__all__ = [
    "ContextScorer",
    "LongestContextScorer",
    "PageTextIndex",
    "PageTextProvider",
    "QuoteMatch",
    "ReanchorReport",
    "RelayoutReanchorer",
    "Word",
    "WordRef",
    "best_match_by_bounds",
    "best_match_by_context",
    "best_match_by_context_and_word_anchor",
    "build_index",
    "candidate_pages",
    "decode_points",
    "encode_points",
]
