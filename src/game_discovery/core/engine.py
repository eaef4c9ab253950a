"""推薦エンジンのファサード。

Web 層が呼び出すエンドポイント相当の操作 (ingest / refresh / suggestions / similar) を提供する。
埋め込み計算と自動取り込みのカスケードは注入された Executor に投入し、呼び出し元は
完了を待たない。状態は `suggestions` のポーリングで観測する。
"""

from __future__ import annotations

import contextvars
import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime
from typing import Any, Protocol

import httpx

from game_discovery.core.cascade import AutoIngestController
from game_discovery.core.embedding import (
    FacetEmbeddingGenerator,
    FacetOutcomeStatus,
)
from game_discovery.core.ingest import IngestionPipeline
from game_discovery.core.models import Facet, GameRecord
from game_discovery.core.similarity import SimilarityMatcher, SimilarityQuery, parse_facet_mode
from game_discovery.core.suggestions import SuggestionResolver, SuggestionService
from game_discovery.infra.db import (
    DatabaseSessionManager,
    EmbeddingCoverage,
    GameStore,
    SQLAlchemyGameStore,
    SQLAlchemyIngestionLock,
)
from game_discovery.infra.embeddings import EmbeddingServiceProtocol, get_default_embedding_service
from game_discovery.infra.generator import GeminiSuggestionConfig, GeminiSuggestionGenerator
from game_discovery.infra.generator.gemini import SuggestionGeneratorProtocol
from game_discovery.infra.steam import CatalogClientProtocol, build_steam_client
from game_discovery.infra.steam.urls import parse_app_identifier
from game_discovery.shared.config import AppSettings, get_settings
from game_discovery.shared.exceptions import BaseAppError, BusyError
from game_discovery.shared.logging import BoundLogger, get_logger, log_context
from game_discovery.shared.types import as_utc

__all__ = ["RecommendationEngine", "build_engine"]


class _Closeable(Protocol):
    def close(self) -> None: ...


def _isoformat(value: datetime | None) -> str | None:
    normalized = as_utc(value)
    return normalized.isoformat() if normalized is not None else None


class RecommendationEngine:
    """推薦エンジンの各コンポーネントを束ねるファサード。"""

    def __init__(
        self,
        *,
        store: GameStore,
        pipeline: IngestionPipeline,
        embeddings: FacetEmbeddingGenerator,
        matcher: SimilarityMatcher,
        suggestions: SuggestionService,
        cascade: AutoIngestController | None = None,
        executor: Executor | None = None,
        max_workers: int = 4,
        auto_ingest_cap: int = 6,
        generate_on_auto_ingest: bool = False,
        auto_ingest_memory_size: int = 1024,
        default_limit: int = 12,
        default_threshold: float = 0.5,
        poll_interval_seconds: float = 2.0,
        poll_max_attempts: int = 30,
        sleep_func: Callable[[float], None] = time.sleep,
        resources: Sequence[_Closeable] = (),
        logger: BoundLogger | None = None,
    ) -> None:
        self.store = store
        self.pipeline = pipeline
        self.embeddings = embeddings
        self.matcher = matcher
        self.suggestion_service = suggestions
        self.cascade = cascade or AutoIngestController(
            pipeline,
            suggestions,
            cap=auto_ingest_cap,
            generate_suggestions=generate_on_auto_ingest,
            on_ingested=self.schedule_embeddings,
            remember_size=auto_ingest_memory_size,
        )
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="game-discovery"
        )
        self._default_limit = default_limit
        self._default_threshold = default_threshold
        self._poll_interval = poll_interval_seconds
        self._poll_max_attempts = poll_max_attempts
        self._sleep = sleep_func
        self._resources = tuple(resources)
        self._logger = logger or get_logger(__name__, component="engine")

    # ---- endpoint surface --------------------------------------------------

    def ingest(self, identifier: str | int, *, force: bool = False) -> GameRecord:
        """ゲームを取り込み、ファセット埋め込みをバックグラウンドで計算する。"""

        with log_context(request="ingest", identifier=str(identifier)):
            record: GameRecord = self.pipeline.ingest(identifier, force=force).or_raise()
            self.schedule_embeddings(record)
        return record

    def refresh(self, identifier: str | int, *, force: bool = False) -> dict[str, Any]:
        """候補を再生成してマージし、未取り込みの対象のカスケードを開始する。"""

        app_id = parse_app_identifier(identifier)
        with log_context(request="refresh", app_id=app_id):
            if self.store.get_game(app_id) is None:
                self.ingest(app_id)

            outcome = self.suggestion_service.refresh(app_id, force=force).or_raise()
            if outcome.queued_for_ingestion:
                self._submit(
                    "auto_ingest",
                    self.cascade.auto_ingest_missing,
                    outcome.queued_for_ingestion,
                    source_app_id=app_id,
                )
            return outcome.to_payload()

    def suggestions(self, identifier: str | int) -> dict[str, Any]:
        app_id = parse_app_identifier(identifier)
        snapshot = self.suggestion_service.get(app_id).or_raise()
        return {
            "suggestions": [suggestion.to_payload() for suggestion in snapshot.suggestions],
            "updatedAt": _isoformat(snapshot.updated_at),
        }

    def similar(
        self,
        identifier: str | int,
        facet: str | Facet = "all",
        *,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> list[dict[str, Any]]:
        query = SimilarityQuery(
            app_id=parse_app_identifier(identifier),
            facet=parse_facet_mode(facet),
            limit=limit if limit is not None else self._default_limit,
            threshold=threshold if threshold is not None else self._default_threshold,
        )
        result = self.matcher.find_similar(query).or_raise()
        return [match.to_payload() for match in result.matches]

    def await_suggestions(
        self,
        identifier: str | int,
        *,
        updated_after: datetime | None = None,
    ) -> dict[str, Any]:
        """候補リストが `updated_after` より新しくなるまで一定間隔でポーリングする。"""

        app_id = parse_app_identifier(identifier)
        threshold = as_utc(updated_after)
        for attempt in range(1, self._poll_max_attempts + 1):
            snapshot = self.suggestion_service.get(app_id).or_raise()
            updated_at = as_utc(snapshot.updated_at)
            if updated_at is not None and (threshold is None or updated_at > threshold):
                return self.suggestions(app_id)
            self._logger.debug("suggestions_poll_waiting", app_id=app_id, attempt=attempt)
            self._sleep(self._poll_interval)
        raise BusyError(f"Suggestions of {app_id} were not updated in time")

    # ---- embeddings --------------------------------------------------------

    def schedule_embeddings(self, record: GameRecord) -> Future[Any]:
        return self._submit("facet_embeddings", self.embed_game, record.app_id)

    def embed_game(self, app_id: int, *, force: bool = False) -> dict[str, str]:
        """1 ゲームの全ファセットを計算し、ファセットごとの結果を返す。"""

        game = self.store.get_game(app_id)
        if game is None:
            return {}
        outcomes: dict[str, str] = {}
        for facet, result in self.embeddings.embed_all(game, force=force).items():
            if result.is_err:
                outcomes[facet.value] = "failed"
            else:
                outcomes[facet.value] = result.unwrap().status.value
        return outcomes

    def backfill_embeddings(
        self,
        app_ids: Iterable[int] | None = None,
        *,
        force: bool = False,
    ) -> dict[str, int]:
        """未計算・stale のファセットをまとめて計算する。"""

        totals = {status.value: 0 for status in FacetOutcomeStatus}
        totals["failed"] = 0
        targets = list(app_ids) if app_ids is not None else self.store.list_app_ids()
        for app_id in targets:
            for status in self.embed_game(app_id, force=force).values():
                totals[status] = totals.get(status, 0) + 1
        self._logger.info("embedding_backfill_finished", games=len(targets), **totals)
        return totals

    def coverage(self) -> EmbeddingCoverage:
        return self.store.embedding_coverage()

    # ---- lifecycle ---------------------------------------------------------

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)
        for resource in self._resources:
            resource.close()

    def __enter__(self) -> RecommendationEngine:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _submit(self, task: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future[Any]:
        try:
            # ワーカースレッドでもログ文脈を引き継ぐ
            context = contextvars.copy_context()
            future = self._executor.submit(context.run, fn, *args, **kwargs)
        except RuntimeError:
            # シャットダウン済みの Executor には積めないため、その場で実行する
            self._logger.warning("background_executor_closed", task=task)
            future = Future()
            try:
                future.set_result(fn(*args, **kwargs))
            except BaseAppError as exc:
                future.set_exception(exc)
        future.add_done_callback(lambda done: self._report(task, done))
        return future

    def _report(self, task: str, future: Future[Any]) -> None:
        if future.cancelled():
            self._logger.warning("background_task_cancelled", task=task)
            return
        error = future.exception()
        if error is not None:
            self._logger.error(
                "background_task_failed",
                task=task,
                error_type=error.__class__.__name__,
                message=str(error),
            )


def build_engine(
    settings: AppSettings | None = None,
    *,
    executor: Executor | None = None,
    manager: DatabaseSessionManager | None = None,
    catalog: CatalogClientProtocol | None = None,
    embedding_service: EmbeddingServiceProtocol | None = None,
    generator: SuggestionGeneratorProtocol | None = None,
    migrate: bool = True,
    sleep_func: Callable[[float], None] = time.sleep,
) -> RecommendationEngine:
    """設定から各コンポーネントを組み立てる。引数で渡したものはそのまま使う。"""

    app_settings = settings or get_settings()
    logger = get_logger(__name__, component="engine", environment=app_settings.environment)
    resources: list[_Closeable] = []

    db_manager = manager or DatabaseSessionManager(settings=app_settings, logger=logger)
    if migrate:
        db_manager.initialize_schema()
    store = SQLAlchemyGameStore(
        db_manager,
        dimension=app_settings.storage.embedding_dimension,
        enable_vec_index=app_settings.storage.enable_vec_index,
    )

    if catalog is None:
        steam_client = build_steam_client(settings=app_settings, sleep_func=sleep_func)
        resources.append(steam_client)
        catalog = steam_client
    if embedding_service is None:
        embedding_service = get_default_embedding_service(app_settings)
    if generator is None:
        gemini_generator = GeminiSuggestionGenerator(
            GeminiSuggestionConfig.from_settings(app_settings),
            http_client=httpx.Client(timeout=app_settings.generator.image_timeout_seconds),
        )
        resources.append(gemini_generator)
        generator = gemini_generator
    if manager is None:
        resources.append(db_manager)

    ingest_settings = app_settings.ingest
    lock_ttl = app_settings.ingest_lock_ttl_seconds()
    if lock_ttl > ingest_settings.lock_ttl_seconds:
        logger.warning(
            "ingest_lock_ttl_raised",
            configured=ingest_settings.lock_ttl_seconds,
            effective=lock_ttl,
        )
    pipeline = IngestionPipeline(
        catalog=catalog,
        store=store,
        lock=SQLAlchemyIngestionLock(db_manager),
        lock_ttl_seconds=lock_ttl,
        wait_max_attempts=ingest_settings.wait_max_attempts,
        wait_delay_seconds=ingest_settings.wait_delay_seconds,
        sleep_func=sleep_func,
    )
    suggestion_settings = app_settings.suggestions
    suggestions = SuggestionService(
        store=store,
        generator=generator,
        resolver=SuggestionResolver(
            store=store,
            catalog=catalog,
            max_explanation_length=suggestion_settings.max_explanation_length,
        ),
    )
    embeddings = FacetEmbeddingGenerator(embedding_service=embedding_service, store=store)
    similarity = app_settings.similarity
    matcher = SimilarityMatcher(
        store=store,
        facet_weights=similarity.facet_weights,
        max_limit=similarity.max_limit,
    )

    return RecommendationEngine(
        store=store,
        pipeline=pipeline,
        embeddings=embeddings,
        matcher=matcher,
        suggestions=suggestions,
        executor=executor,
        max_workers=app_settings.background_workers,
        auto_ingest_cap=suggestion_settings.auto_ingest_cap,
        generate_on_auto_ingest=suggestion_settings.generate_on_auto_ingest,
        auto_ingest_memory_size=suggestion_settings.auto_ingest_memory_size,
        default_limit=similarity.default_limit,
        default_threshold=similarity.default_threshold,
        poll_interval_seconds=suggestion_settings.poll_interval_seconds,
        poll_max_attempts=suggestion_settings.poll_max_attempts,
        sleep_func=sleep_func,
        resources=resources,
        logger=logger,
    )
