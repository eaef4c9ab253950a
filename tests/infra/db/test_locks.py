"""SQLAlchemyIngestionLock のテスト。"""

from __future__ import annotations

from datetime import datetime, timedelta

from game_discovery.infra.db import SQLAlchemyIngestionLock, lock_key_for


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now


def test_lock_key_format() -> None:
    assert lock_key_for(620) == "ingest:620"


def test_second_acquire_is_rejected_until_release(db_manager) -> None:
    lock = SQLAlchemyIngestionLock(db_manager)
    key = lock_key_for(1)

    token = lock.acquire(key, ttl_seconds=60)

    assert token is not None
    assert lock.acquire(key, ttl_seconds=60) is None
    assert lock.is_held(key) is True

    lock.release(key, token)

    assert lock.is_held(key) is False
    assert lock.acquire(key, ttl_seconds=60) is not None


def test_release_with_foreign_token_keeps_lock(db_manager) -> None:
    lock = SQLAlchemyIngestionLock(db_manager)
    key = lock_key_for(2)
    lock.acquire(key, ttl_seconds=60)

    lock.release(key, "not-my-token")

    assert lock.is_held(key) is True


def test_expired_lock_can_be_taken_over(db_manager) -> None:
    clock = _Clock()
    lock = SQLAlchemyIngestionLock(db_manager, clock=clock)
    key = lock_key_for(3)
    first = lock.acquire(key, ttl_seconds=30)

    clock.now += timedelta(seconds=31)

    assert lock.is_held(key) is False
    second = lock.acquire(key, ttl_seconds=30)
    assert second is not None
    assert second != first


def test_locks_are_independent_per_key(db_manager) -> None:
    lock = SQLAlchemyIngestionLock(db_manager)

    assert lock.acquire(lock_key_for(4), ttl_seconds=60) is not None
    assert lock.acquire(lock_key_for(5), ttl_seconds=60) is not None
