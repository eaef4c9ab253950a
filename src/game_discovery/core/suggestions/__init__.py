"""候補キャッシュとマージ。"""

from .context import build_suggestion_context, extract_keywords
from .merge import MergeResult, merge_suggestions, sanitize_explanation
from .resolver import ResolutionReport, SuggestionResolver
from .service import RefreshOutcome, SuggestionService

__all__ = [
    "MergeResult",
    "RefreshOutcome",
    "ResolutionReport",
    "SuggestionResolver",
    "SuggestionService",
    "build_suggestion_context",
    "extract_keywords",
    "merge_suggestions",
    "sanitize_explanation",
]
