"""類似ゲーム検索。"""

from .dto import (
    ALL_FACETS,
    SimilarCandidate,
    SimilarityQuery,
    SimilarityResult,
    parse_facet_mode,
)
from .matcher import SimilarityMatcher, SimilarityMatcherError

__all__ = [
    "ALL_FACETS",
    "SimilarCandidate",
    "SimilarityMatcher",
    "SimilarityMatcherError",
    "SimilarityQuery",
    "SimilarityResult",
    "parse_facet_mode",
]
