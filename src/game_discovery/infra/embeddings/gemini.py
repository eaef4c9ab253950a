"""Gemini の embed_content を使うファセット埋め込みプロバイダー。"""

from __future__ import annotations

import math
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from game_discovery.infra.gemini_errors import classify_google_error
from game_discovery.shared.config import AppSettings, get_settings
from game_discovery.shared.exceptions import ConfigurationError, TerminalError, TransientError
from game_discovery.shared.logging import get_logger
from game_discovery.shared.retry import RateLimiter, RetryExecutor, RetryPolicy

from .base import (
    EmbeddingJob,
    EmbeddingServiceError,
    EmbeddingServiceProtocol,
    EmbeddingVector,
    FailedEmbeddingQueue,
)

SEMANTIC_SIMILARITY_TASK = "SEMANTIC_SIMILARITY"


class EmbeddingClientProtocol(Protocol):
    def embed(self, contents: Sequence[str]) -> dict[str, Any]:  # pragma: no cover - protocol
        """テキスト列をまとめて埋め込む。"""


@dataclass(slots=True)
class GeminiEmbeddingConfig:
    api_key: str
    model: str
    output_dimensionality: int | None = None
    rate_limit_per_minute: int = 60
    max_batch_size: int = 32
    task_type: str = SEMANTIC_SIMILARITY_TASK
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_settings(cls, settings: AppSettings | None = None) -> GeminiEmbeddingConfig:
        target = settings or get_settings()
        api_key = target.gemini.api_key.get_secret_value()
        if not api_key:
            raise ConfigurationError("Gemini API key is missing")
        return cls(
            api_key=api_key,
            model=target.gemini.model,
            output_dimensionality=target.storage.embedding_dimension,
            rate_limit_per_minute=target.gemini.rate_limit_per_minute,
            max_batch_size=target.gemini.max_batch_size,
            retry_policy=target.gemini.retry.to_policy(),
        )

    @property
    def resolved_model(self) -> str:
        if self.model.startswith("models/"):
            return self.model
        return f"models/{self.model}"


class GeminiEmbeddingService(EmbeddingServiceProtocol):
    """ファセットテキストを Gemini で埋め込む。

    リクエストは分間上限で間引き、一時的な失敗だけを再試行する。返ってきたベクトルは
    件数と次元を検証し、失敗したジョブは `failure_queue` に残してから例外を送出する。
    """

    provider_name = "gemini"

    def __init__(
        self,
        config: GeminiEmbeddingConfig,
        *,
        embedding_client: EmbeddingClientProtocol | None = None,
        rate_limiter: RateLimiter | None = None,
        retry_executor: RetryExecutor | None = None,
        failure_queue: FailedEmbeddingQueue | None = None,
    ) -> None:
        self.config = config
        self._client = embedding_client or _GenaiEmbeddingClient(config)
        self._rate_limiter = rate_limiter or RateLimiter(config.rate_limit_per_minute)
        self._retry_executor = retry_executor or RetryExecutor(config.retry_policy)
        self.failure_queue = failure_queue if failure_queue is not None else FailedEmbeddingQueue()
        self._logger = get_logger(__name__, component="gemini_embeddings", model=config.model)

    @classmethod
    def from_settings(cls, settings: AppSettings | None = None) -> GeminiEmbeddingService:
        return cls(config=GeminiEmbeddingConfig.from_settings(settings))

    def embed(self, job: EmbeddingJob) -> EmbeddingVector:
        return self.embed_many([job])[0]

    def embed_many(self, jobs: Sequence[EmbeddingJob]) -> list[EmbeddingVector]:
        vectors: list[EmbeddingVector] = []
        for batch in self._batches(jobs):
            try:
                vectors.extend(self._embed_batch(batch))
            except EmbeddingServiceError as exc:
                self._record_failure(batch, exc)
                raise
        return vectors

    def _batches(self, jobs: Sequence[EmbeddingJob]) -> Iterator[Sequence[EmbeddingJob]]:
        size = self.config.max_batch_size
        for start in range(0, len(jobs), size):
            yield jobs[start : start + size]

    def _embed_batch(self, batch: Sequence[EmbeddingJob]) -> list[EmbeddingVector]:
        contents = [job.content for job in batch]

        def request() -> dict[str, Any]:
            self._rate_limiter.acquire()
            try:
                return self._client.embed(contents)
            except google_exceptions.GoogleAPIError as exc:
                raise classify_google_error(exc) from exc

        try:
            payload = self._retry_executor.run(request, operation_name="gemini_embed")
        except (TransientError, TerminalError) as exc:
            raise EmbeddingServiceError(str(exc)) from exc

        rows = _embedding_rows(payload, len(batch))
        return [
            EmbeddingVector(
                job_id=job.job_id,
                values=self._checked_values(job, row),
                model=self.config.model,
            )
            for job, row in zip(batch, rows, strict=True)
        ]

    def _checked_values(self, job: EmbeddingJob, row: Any) -> tuple[float, ...]:
        try:
            values = tuple(float(value) for value in row)
        except (TypeError, ValueError) as exc:
            raise EmbeddingServiceError(f"Non-numeric embedding for {job.job_id}") from exc
        if not values or not all(math.isfinite(value) for value in values):
            raise EmbeddingServiceError(f"Invalid embedding values for {job.job_id}")
        expected = self.config.output_dimensionality
        if expected is not None and len(values) != expected:
            msg = f"Embedding for {job.job_id} has dimension {len(values)}, expected {expected}"
            raise EmbeddingServiceError(msg)
        return values

    def _record_failure(self, batch: Sequence[EmbeddingJob], error: Exception) -> None:
        for job in batch:
            self.failure_queue.push(job, error)
        self._logger.error(
            "facet_embedding_request_failed",
            jobs=[job.job_id for job in batch],
            error_type=error.__class__.__name__,
            message=str(error),
        )


def _embedding_rows(payload: Any, expected: int) -> list[Any]:
    """embed_content の応答からジョブ数分の行を取り出す。

    入力が 1 件の場合はフラットな配列が返る。
    """

    data = payload.get("embedding") if isinstance(payload, dict) else None
    if not isinstance(data, list) or not data:
        raise EmbeddingServiceError("Gemini response did not include embeddings")
    rows = data if isinstance(data[0], list) else [data]
    if len(rows) != expected:
        raise EmbeddingServiceError(f"Gemini returned {len(rows)} embeddings for {expected} texts")
    return rows


class _GenaiEmbeddingClient(EmbeddingClientProtocol):
    def __init__(self, config: GeminiEmbeddingConfig) -> None:
        self._config = config
        self._configured = False

    def embed(self, contents: Sequence[str]) -> dict[str, Any]:
        if not self._configured:
            genai.configure(api_key=self._config.api_key)
            self._configured = True
        content: str | list[str] = contents[0] if len(contents) == 1 else list(contents)
        return genai.embed_content(
            model=self._config.resolved_model,
            content=content,
            task_type=self._config.task_type,
            output_dimensionality=self._config.output_dimensionality,
        )


__all__ = [
    "EmbeddingClientProtocol",
    "GeminiEmbeddingConfig",
    "GeminiEmbeddingService",
]
