"""DB テーブルを用いた取り込みロック。"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Protocol
from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from game_discovery.shared.logging import BoundLogger, get_logger
from game_discovery.shared.types import utc_now

from .models import IngestionLock
from .session import DatabaseSessionManager

__all__ = ["IngestionLockProtocol", "SQLAlchemyIngestionLock", "lock_key_for"]


def lock_key_for(app_id: int) -> str:
    return f"ingest:{app_id}"


class IngestionLockProtocol(Protocol):
    """識別子ごとの排他マーカー。"""

    def acquire(self, key: str, ttl_seconds: float) -> str | None:
        """取得できればトークンを、保持中なら None を返す。"""

    def release(self, key: str, token: str) -> None:
        """自分が取得したロックだけを解放する。"""

    def is_held(self, key: str) -> bool:
        """有効期限内のロックが存在するか。"""


def _naive_utc() -> datetime:
    return utc_now().replace(tzinfo=None)


class SQLAlchemyIngestionLock(IngestionLockProtocol):
    """`ingestion_locks` の一意制約を利用した期限付きロック。

    取得時は期限切れの行を消してから挿入し、一意制約違反なら保持中とみなす。
    """

    def __init__(
        self,
        manager: DatabaseSessionManager,
        *,
        clock: Callable[[], datetime] = _naive_utc,
        logger: BoundLogger | None = None,
    ) -> None:
        self._manager = manager
        self._clock = clock
        self._logger = logger or get_logger(__name__, component="ingestion-lock")

    def acquire(self, key: str, ttl_seconds: float) -> str | None:
        now = self._clock()
        token = uuid4().hex
        try:
            with self._manager.transaction() as session:
                session.execute(
                    delete(IngestionLock).where(
                        IngestionLock.lock_key == key,
                        IngestionLock.expires_at <= now,
                    )
                )
                session.add(
                    IngestionLock(
                        lock_key=key,
                        token=token,
                        expires_at=now + timedelta(seconds=ttl_seconds),
                        created_at=now,
                    )
                )
        except IntegrityError:
            self._logger.debug("ingestion_lock_held", key=key)
            return None
        self._logger.debug("ingestion_lock_acquired", key=key, ttl_seconds=ttl_seconds)
        return token

    def release(self, key: str, token: str) -> None:
        with self._manager.transaction() as session:
            session.execute(
                delete(IngestionLock).where(
                    IngestionLock.lock_key == key,
                    IngestionLock.token == token,
                )
            )
        self._logger.debug("ingestion_lock_released", key=key)

    def is_held(self, key: str) -> bool:
        now = self._clock()
        with self._manager.session() as session:
            found = session.execute(
                select(IngestionLock.lock_key).where(
                    IngestionLock.lock_key == key,
                    IngestionLock.expires_at > now,
                )
            ).first()
        return found is not None
