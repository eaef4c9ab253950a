"""ファセット埋め込み。"""

from .facets import FACET_RULES, FacetCondition, FacetRule, describe_facets, facet_text_hash
from .generator import (
    FacetEmbeddingError,
    FacetEmbeddingGenerator,
    FacetEmbeddingOutcome,
    FacetOutcomeStatus,
)

__all__ = [
    "FACET_RULES",
    "FacetCondition",
    "FacetEmbeddingError",
    "FacetEmbeddingGenerator",
    "FacetEmbeddingOutcome",
    "FacetOutcomeStatus",
    "FacetRule",
    "describe_facets",
    "facet_text_hash",
]
