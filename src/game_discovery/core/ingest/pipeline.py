"""取り込みパイプライン: 識別子ごとのロックの下でカタログから取得し upsert する。"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from game_discovery.core.models import GameRecord
from game_discovery.infra.db.game_store import GameStore
from game_discovery.infra.db.locks import IngestionLockProtocol, lock_key_for
from game_discovery.infra.steam.client import CatalogClientProtocol
from game_discovery.infra.steam.urls import parse_app_identifier
from game_discovery.shared.exceptions import (
    BaseAppError,
    BusyError,
    NotFoundError,
    Result,
    TerminalError,
)
from game_discovery.shared.logging import BoundLogger, get_logger

from .normalize import normalize_app_details


@dataclass(slots=True)
class IngestionPipeline:
    """単一ゲームの取り込みを担うパイプライン。

    同じ appId の取り込みはロックで直列化し、保持中であれば一定間隔でポーリングして
    先行する取り込みの結果を返す。埋め込みや候補生成は行わない (呼び出し元の責務)。
    """

    catalog: CatalogClientProtocol
    store: GameStore
    lock: IngestionLockProtocol
    lock_ttl_seconds: float = 60.0
    wait_max_attempts: int = 10
    wait_delay_seconds: float = 1.0
    sleep_func: Callable[[float], None] = time.sleep
    logger: BoundLogger = field(
        default_factory=lambda: get_logger(__name__, component="ingestion-pipeline")
    )

    def ingest(
        self,
        identifier: str | int,
        *,
        force: bool = False,
    ) -> Result[GameRecord, BaseAppError]:
        """識別子 (数値またはストア URL) のゲームを取り込む。

        Args:
            identifier: appId またはカタログ URL
            force: 既存の完全なレコードがあっても再取得する

        Returns:
            成功時: 保存後の GameRecord
            失敗時: NotFoundError / BusyError / TerminalError など
        """

        try:
            app_id = parse_app_identifier(identifier)
        except NotFoundError as exc:
            self.logger.warning("ingest_identifier_invalid", identifier=str(identifier))
            return Result.err(exc)

        if not force:
            existing = self.store.get_game(app_id)
            if existing is not None and existing.is_complete:
                self.logger.debug("ingest_skipped_existing", app_id=app_id)
                return Result.ok(existing)

        key = lock_key_for(app_id)
        token = self.lock.acquire(key, self.lock_ttl_seconds)
        if token is None:
            return self._wait_for_inflight(app_id, key, force=force)
        return self._ingest_locked(app_id, key, token, force=force)

    def _wait_for_inflight(
        self,
        app_id: int,
        key: str,
        *,
        force: bool,
    ) -> Result[GameRecord, BaseAppError]:
        self.logger.info("ingest_lock_contended", app_id=app_id)
        for attempt in range(1, self.wait_max_attempts + 1):
            self.sleep_func(self.wait_delay_seconds)
            if self.lock.is_held(key):
                continue

            existing = self.store.get_game(app_id)
            if existing is not None and existing.is_complete:
                self.logger.info("ingest_joined_inflight", app_id=app_id, attempt=attempt)
                return Result.ok(existing)

            # 先行処理が失敗して何も残さなかった場合は自分で取り込む
            token = self.lock.acquire(key, self.lock_ttl_seconds)
            if token is not None:
                return self._ingest_locked(app_id, key, token, force=force)

        self.logger.warning(
            "ingest_lock_wait_exhausted",
            app_id=app_id,
            attempts=self.wait_max_attempts,
            force=force,
        )
        return Result.err(BusyError(f"Ingestion of {app_id} is still in progress"))

    def _ingest_locked(
        self,
        app_id: int,
        key: str,
        token: str,
        *,
        force: bool,
    ) -> Result[GameRecord, BaseAppError]:
        self.logger.info("ingest_started", app_id=app_id, force=force)
        try:
            if not force:
                # ロック取得までの間に別の取り込みが完了している場合がある
                existing = self.store.get_game(app_id)
                if existing is not None and existing.is_complete:
                    return Result.ok(existing)
            details = self.catalog.fetch_app_details(app_id)
            payload = normalize_app_details(details)
            record = self.store.upsert_game(payload)
        except BaseAppError as exc:
            return self._fail("ingest_failed", app_id, exc)
        except ValueError as exc:
            return self._fail("ingest_payload_invalid", app_id, NotFoundError(str(exc)))
        finally:
            self.lock.release(key, token)

        self.logger.info("ingest_succeeded", app_id=app_id, title=record.title)
        return Result.ok(record)

    def _fail(
        self,
        event: str,
        app_id: int,
        error: BaseAppError,
    ) -> Result[GameRecord, BaseAppError]:
        log = self.logger.warning if isinstance(error, NotFoundError) else self.logger.error
        log(
            event,
            app_id=app_id,
            error_type=error.__class__.__name__,
            message=str(error),
            terminal=isinstance(error, TerminalError),
        )
        return Result.err(error)


__all__ = ["IngestionPipeline"]
