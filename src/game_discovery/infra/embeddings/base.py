"""ファセット埋め込みプロバイダーの共通型。"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from game_discovery.shared.exceptions import BaseAppError
from game_discovery.shared.types import ValueObject, utc_now

__all__ = [
    "EmbeddingJob",
    "EmbeddingServiceError",
    "EmbeddingServiceProtocol",
    "EmbeddingVector",
    "FailedEmbeddingQueue",
    "FailedEmbeddingRecord",
]


class EmbeddingServiceError(BaseAppError):
    """埋め込みプロバイダーの呼び出しに失敗した。"""

    default_message = "Embedding provider failed"


@dataclass(slots=True)
class EmbeddingJob(ValueObject):
    """1 ゲーム 1 ファセット分の抽出テキスト。"""

    app_id: int
    facet: str
    content: str
    rule_version: int = 1

    @property
    def job_id(self) -> str:
        return f"{self.app_id}:{self.facet}"


@dataclass(slots=True)
class EmbeddingVector(ValueObject):
    job_id: str
    values: tuple[float, ...]
    model: str
    created_at: datetime = field(default_factory=utc_now)

    @property
    def dimension(self) -> int:
        return len(self.values)


class EmbeddingServiceProtocol(Protocol):
    """ファセットテキストをベクトル化するプロバイダー。"""

    provider_name: str

    def embed(self, job: EmbeddingJob) -> EmbeddingVector:  # pragma: no cover - protocol
        """単一ジョブを処理する。"""

    def embed_many(  # pragma: no cover - protocol
        self,
        jobs: Sequence[EmbeddingJob],
    ) -> list[EmbeddingVector]:
        """入力順を保ったままバッチで処理する。"""


@dataclass(slots=True)
class FailedEmbeddingRecord(ValueObject):
    job: EmbeddingJob
    error_message: str
    attempts: int = 1
    failed_at: datetime = field(default_factory=utc_now)


class FailedEmbeddingQueue:
    """バックフィルで再実行するための失敗ジョブ置き場。

    同じゲーム・ファセットの失敗は 1 件にまとめ、失敗回数だけを積み上げる。
    上限を超えた場合は最も古い失敗から捨てる。
    """

    def __init__(self, max_size: int = 100) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._max_size = max_size
        self._records: OrderedDict[str, FailedEmbeddingRecord] = OrderedDict()

    def push(self, job: EmbeddingJob, error: Exception | str) -> FailedEmbeddingRecord:
        previous = self._records.pop(job.job_id, None)
        record = FailedEmbeddingRecord(
            job=job,
            error_message=str(error),
            attempts=previous.attempts + 1 if previous else 1,
        )
        self._records[job.job_id] = record
        while len(self._records) > self._max_size:
            self._records.popitem(last=False)
        return record

    def pending_job_ids(self) -> list[str]:
        return list(self._records)

    def drain(self) -> Iterator[FailedEmbeddingRecord]:
        while self._records:
            _, record = self._records.popitem(last=False)
            yield record

    def __len__(self) -> int:
        return len(self._records)
