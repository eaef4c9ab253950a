"""類似ゲーム候補の生成器。"""

from .gemini import (
    GeminiSuggestionConfig,
    GeminiSuggestionGenerator,
    GenerationClientProtocol,
    SuggestionGeneratorProtocol,
    build_prompt,
)
from .parser import ParseResult, ParseStatus, SuggestionCandidate, parse_suggestions

__all__ = [
    "GeminiSuggestionConfig",
    "GeminiSuggestionGenerator",
    "GenerationClientProtocol",
    "ParseResult",
    "ParseStatus",
    "SuggestionCandidate",
    "SuggestionGeneratorProtocol",
    "build_prompt",
    "parse_suggestions",
]
