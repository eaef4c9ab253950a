"""共有型・ユーティリティ。"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Hashable
from dataclasses import asdict, dataclass, is_dataclass
from datetime import UTC, datetime
from threading import Lock
from typing import Any, Generic, NewType, TypeVar

AppID = NewType("AppID", int)
Timestamp = datetime


@dataclass(slots=True)
class ValueObject:
    """DTO や VO のベースクラス。"""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class DTO(ValueObject):
    """データ転送オブジェクト用ベース。"""


def dto_dict(instance: Any) -> dict[str, Any]:
    """DTO/VO、または任意の dataclass を dict 化する。"""

    if isinstance(instance, ValueObject):
        return instance.to_dict()
    if is_dataclass(instance):
        return asdict(instance)
    msg = "dto_dict expects a dataclass or ValueObject instance"
    raise TypeError(msg)


def utc_now() -> datetime:
    """UTC の現在時刻を返す。"""

    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite から読み出した naive な日時を UTC として扱う。"""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class BoundedLRUCache(Generic[K, V]):
    """容量上限付きの LRU キャッシュ。

    上限を超えた時点で最も長く参照されていないエントリを 1 件ずつ追い出す。
    クライアントごとにインスタンスを持たせ、モジュールレベルでは共有しない。
    """

    def __init__(self, max_size: int) -> None:
        if max_size <= 0:
            msg = "max_size must be a positive integer"
            raise ValueError(msg)
        self.max_size = max_size
        self._items: OrderedDict[K, V] = OrderedDict()
        self._lock = Lock()

    def get(self, key: K) -> V | None:
        with self._lock:
            if key not in self._items:
                return None
            self._items.move_to_end(key)
            return self._items[key]

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._items[key] = value
            self._items.move_to_end(key)
            while len(self._items) > self.max_size:
                self._items.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


__all__ = [
    "AppID",
    "BoundedLRUCache",
    "DTO",
    "Timestamp",
    "ValueObject",
    "as_utc",
    "dto_dict",
    "utc_now",
]
