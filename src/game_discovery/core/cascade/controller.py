"""未取り込みの候補対象を上限付きで自動取り込みするコントローラー。"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from game_discovery.core.ingest.pipeline import IngestionPipeline
from game_discovery.core.models import GameRecord
from game_discovery.core.suggestions.service import SuggestionService
from game_discovery.shared.logging import BoundLogger, get_logger
from game_discovery.shared.types import DTO, BoundedLRUCache

__all__ = ["AutoIngestController", "AutoIngestReport"]


@dataclass(slots=True)
class AutoIngestReport(DTO):
    """1 回の呼び出しの結果。

    deferred は上限を超えたため今回は見送った対象、skipped は処理中か取り込み済みの対象。
    failed の対象は記憶しないので、次の呼び出しで再び試す。
    """

    ingested: tuple[int, ...] = field(default_factory=tuple)
    failed: dict[int, str] = field(default_factory=dict)
    deferred: tuple[int, ...] = field(default_factory=tuple)
    skipped: tuple[int, ...] = field(default_factory=tuple)

    @property
    def attempted(self) -> tuple[int, ...]:
        return (*self.ingested, *self.failed)


class AutoIngestController:
    """候補の対象を最大 `cap` 件ずつ取り込む。

    処理中の appId と、取り込みに成功した直近 `remember_size` 件の appId は対象から外す。
    失敗した appId はパスの終了時に処理中から外れ、後続の更新で再試行される。どちらも
    最適化のための記録で、再起動で失われても正しさには影響しない。
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        suggestions: SuggestionService,
        *,
        cap: int = 6,
        generate_suggestions: bool = False,
        on_ingested: Callable[[GameRecord], None] | None = None,
        remember_size: int = 1024,
        logger: BoundLogger | None = None,
    ) -> None:
        if cap < 0:
            msg = "cap must be zero or a positive integer"
            raise ValueError(msg)
        self._pipeline = pipeline
        self._suggestions = suggestions
        self._cap = cap
        self._generate_suggestions = generate_suggestions
        self._on_ingested = on_ingested
        self._logger = logger or get_logger(__name__, component="auto-ingest")
        self._in_flight: set[int] = set()
        self._ingested: BoundedLRUCache[int, bool] = BoundedLRUCache(remember_size)
        self._lock = threading.Lock()

    @property
    def cap(self) -> int:
        return self._cap

    @property
    def in_flight(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._in_flight)

    def auto_ingest_missing(
        self,
        targets: Iterable[int],
        *,
        source_app_id: int | None = None,
    ) -> AutoIngestReport:
        ordered = list(dict.fromkeys(int(target) for target in targets))
        with self._lock:
            fresh = [
                target
                for target in ordered
                if target not in self._in_flight and target not in self._ingested
            ]
            selected = fresh[: self._cap]
            self._in_flight.update(selected)
        skipped = tuple(target for target in ordered if target not in fresh)
        deferred = tuple(fresh[self._cap :])

        self._logger.info(
            "auto_ingest_started",
            source_app_id=source_app_id,
            selected=len(selected),
            deferred=len(deferred),
            skipped=len(skipped),
        )

        ingested: list[int] = []
        failed: dict[int, str] = {}
        try:
            for app_id in selected:
                result = self._pipeline.ingest(app_id)
                if result.is_err:
                    error = result.unwrap_err()
                    failed[app_id] = error.__class__.__name__
                    self._logger.warning(
                        "auto_ingest_failed",
                        app_id=app_id,
                        source_app_id=source_app_id,
                        error_type=error.__class__.__name__,
                        message=str(error),
                    )
                    continue

                record = result.unwrap()
                ingested.append(app_id)
                self._ingested.put(app_id, True)
                self._after_ingest(record, source_app_id)
        finally:
            with self._lock:
                self._in_flight.difference_update(selected)

        self._logger.info(
            "auto_ingest_finished",
            source_app_id=source_app_id,
            ingested=len(ingested),
            failed=len(failed),
        )
        return AutoIngestReport(
            ingested=tuple(ingested),
            failed=failed,
            deferred=deferred,
            skipped=skipped,
        )

    def _after_ingest(self, record: GameRecord, source_app_id: int | None) -> None:
        if self._on_ingested is not None:
            self._on_ingested(record)
        if source_app_id is not None:
            self._suggestions.link_reciprocal(record.app_id, source_app_id)
        if self._generate_suggestions:
            outcome = self._suggestions.refresh(record.app_id)
            if outcome.is_err:
                error = outcome.unwrap_err()
                self._logger.warning(
                    "auto_ingest_suggestions_failed",
                    app_id=record.app_id,
                    error_type=error.__class__.__name__,
                    message=str(error),
                )
