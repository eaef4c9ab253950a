"""Gemini の生成モデルで類似ゲーム候補を得る。"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import google.generativeai as genai
import httpx
from google.api_core import exceptions as google_exceptions

from game_discovery.infra.gemini_errors import classify_google_error
from game_discovery.shared.config import AppSettings, get_settings
from game_discovery.shared.exceptions import ConfigurationError
from game_discovery.shared.logging import BoundLogger, get_logger
from game_discovery.shared.retry import RetryExecutor, RetryPolicy

from .parser import ParseResult, parse_suggestions

__all__ = [
    "GeminiSuggestionConfig",
    "GeminiSuggestionGenerator",
    "GenerationClientProtocol",
    "SuggestionGeneratorProtocol",
    "build_prompt",
]

_PROMPT_TEMPLATE = """You are an expert curator of independent video games.
Look at the attached key art and the game context below, then recommend {count} other games
on Steam that a player who enjoys this game would also love. Prefer indie titles and
explain in one sentence what they share (art style, mood, mechanics or story).

Answer ONLY with a JSON array. Each element must be an object with the keys
"title" (string), "appId" (Steam app id as an integer, or null if unsure) and
"explanation" (string). Do not recommend the game itself.

Game context:
{context}
"""


class SuggestionGeneratorProtocol(Protocol):
    """候補生成器のプロトコル。"""

    def generate(self, image_url: str | None, context: str) -> ParseResult:
        """画像とテキスト文脈から候補を生成する。"""


class GenerationClientProtocol(Protocol):
    """生成モデル呼び出しの抽象。"""

    def generate(self, parts: Sequence[Any]) -> str:  # pragma: no cover - protocol
        """プロンプトと画像パーツから応答本文を返す。"""


def build_prompt(context: str, *, count: int) -> str:
    return _PROMPT_TEMPLATE.format(count=count, context=context.strip())


@dataclass(slots=True)
class GeminiSuggestionConfig:
    """生成リクエストの設定。"""

    api_key: str
    model: str
    max_suggestions: int = 10
    timeout_seconds: float = 60.0
    image_timeout_seconds: float = 10.0
    retry_policy: RetryPolicy = field(
        default_factory=lambda: RetryPolicy(max_attempts=2, initial_delay=1.0)
    )

    @classmethod
    def from_settings(cls, settings: AppSettings | None = None) -> GeminiSuggestionConfig:
        target = settings or get_settings()
        api_key = target.gemini.api_key.get_secret_value()
        if not api_key:
            raise ConfigurationError("Gemini API key is missing")
        generator = target.generator
        return cls(
            api_key=api_key,
            model=generator.model,
            max_suggestions=generator.max_suggestions,
            timeout_seconds=generator.timeout_seconds,
            image_timeout_seconds=generator.image_timeout_seconds,
            retry_policy=generator.retry.to_policy(),
        )


class GeminiSuggestionGenerator(SuggestionGeneratorProtocol):
    """キーアートと文脈を Gemini に渡し、応答を `ParseResult` に変換する。"""

    def __init__(
        self,
        config: GeminiSuggestionConfig,
        *,
        generation_client: GenerationClientProtocol | None = None,
        http_client: httpx.Client | None = None,
        retry_executor: RetryExecutor | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        self.config = config
        self._client = generation_client or _GeminiGenerationClient(config)
        self._http = http_client or httpx.Client(timeout=config.image_timeout_seconds)
        self._retry_executor = retry_executor or RetryExecutor(config.retry_policy)
        self._logger = logger or get_logger(__name__, component="suggestion-generator")

    @classmethod
    def from_settings(cls, settings: AppSettings | None = None) -> GeminiSuggestionGenerator:
        return cls(config=GeminiSuggestionConfig.from_settings(settings))

    def generate(self, image_url: str | None, context: str) -> ParseResult:
        parts: list[Any] = [build_prompt(context, count=self.config.max_suggestions)]
        image_part = self._load_image(image_url)
        if image_part is not None:
            parts.append(image_part)

        def operation() -> str:
            try:
                return self._client.generate(parts)
            except google_exceptions.GoogleAPIError as exc:
                raise classify_google_error(exc) from exc

        text = self._retry_executor.run(operation, operation_name="gemini_generate")
        result = parse_suggestions(text)
        self._logger.info(
            "suggestions_generated",
            status=result.status.value,
            candidates=len(result.candidates),
            detail=result.detail,
            with_image=image_part is not None,
        )
        return result

    def close(self) -> None:
        self._http.close()

    def _load_image(self, image_url: str | None) -> dict[str, Any] | None:
        if not image_url:
            return None
        try:
            response = self._http.get(image_url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self._logger.warning("suggestion_image_unavailable", url=image_url, error=str(exc))
            return None
        mime_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip()
        if not mime_type.startswith("image/"):
            mime_type = "image/jpeg"
        return {"mime_type": mime_type, "data": response.content}


class _GeminiGenerationClient(GenerationClientProtocol):
    """google-generativeai の thin wrapper。"""

    def __init__(self, config: GeminiSuggestionConfig) -> None:
        self._api_key = config.api_key
        self._model_name = config.model
        self._timeout = config.timeout_seconds
        self._model: Any | None = None

    def generate(self, parts: Sequence[Any]) -> str:
        model = self._ensure_model()
        response = model.generate_content(
            list(parts),
            request_options={"timeout": self._timeout},
        )
        try:
            return response.text
        except ValueError:
            # ブロックされた応答などで text が取り出せない場合は空扱い
            return ""

    def _ensure_model(self) -> Any:
        if self._model is None:
            genai.configure(api_key=self._api_key)
            self._model = genai.GenerativeModel(self._model_name)
        return self._model
