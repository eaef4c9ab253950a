"""再試行ポリシーとレート制御。"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from .exceptions import TerminalError, TransientError
from .logging import BoundLogger, get_logger

__all__ = [
    "MinIntervalRateLimiter",
    "RateLimiter",
    "RetryExecutor",
    "RetryPolicy",
]

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """指数バックオフ付きの再試行ポリシー。

    `delay(n)` は n 回目の失敗後に待つ秒数で、`initial_delay * multiplier**(n-1)` を
    `max_delay` で頭打ちにしたもの。
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 10.0
    retry_exceptions: tuple[type[Exception], ...] = (
        TransientError,
        ConnectionError,
        TimeoutError,
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = "max_attempts must be >= 1"
            raise ValueError(msg)
        if self.initial_delay < 0 or self.max_delay < 0:
            msg = "delays must be non-negative"
            raise ValueError(msg)
        if self.multiplier < 1:
            msg = "multiplier must be >= 1"
            raise ValueError(msg)

    def delay(self, attempt: int) -> float:
        return min(self.max_delay, self.initial_delay * (self.multiplier ** (attempt - 1)))

    def total_delay(self) -> float:
        """予算を使い切るまでに待つ秒数の合計。"""

        return sum(self.delay(attempt) for attempt in range(1, self.max_attempts))

    def allows(self, error: Exception) -> bool:
        return isinstance(error, self.retry_exceptions)


@dataclass(slots=True)
class RetryExecutor:
    """指定した処理を再試行付きで実行する。

    再試行対象外の例外はそのまま送出し、再試行対象の例外で予算を使い切った場合は
    最後の例外を原因とする `TerminalError` を送出する。
    """

    policy: RetryPolicy
    sleeper: Callable[[float], None] = time.sleep
    logger: BoundLogger = field(default_factory=lambda: get_logger(__name__, component="retry"))

    def run(self, operation: Callable[[], T], *, operation_name: str = "operation") -> T:
        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                return operation()
            except Exception as exc:
                if not self.policy.allows(exc):
                    raise
                if attempt >= self.policy.max_attempts:
                    self.logger.warning(
                        "retry_exhausted",
                        operation=operation_name,
                        attempts=attempt,
                        error_type=exc.__class__.__name__,
                        message=str(exc),
                    )
                    msg = f"{operation_name} failed after {attempt} attempts: {exc}"
                    raise TerminalError(msg) from exc
                wait = self.policy.delay(attempt)
                self.logger.info(
                    "retry_scheduled",
                    operation=operation_name,
                    attempt=attempt,
                    wait_seconds=wait,
                    error_type=exc.__class__.__name__,
                )
                self.sleeper(wait)
        raise RuntimeError("retry executor exhausted without running operation")


@dataclass(slots=True)
class RateLimiter:
    """単純なトークンバケット風のレート制御。"""

    rate_per_minute: int
    sleeper: Callable[[float], None] = time.sleep
    _timestamps: deque[float] = field(default_factory=deque)

    def acquire(self) -> None:
        window = 60.0
        now = time.monotonic()
        while self._timestamps and now - self._timestamps[0] > window:
            self._timestamps.popleft()
        if len(self._timestamps) >= self.rate_per_minute and self._timestamps:
            sleep_for = window - (now - self._timestamps[0])
            if sleep_for > 0:
                self.sleeper(sleep_for)
        self._timestamps.append(time.monotonic())


class MinIntervalRateLimiter:
    """連続する呼び出しの間に最小間隔を強制する。

    複数スレッドから呼ばれても呼び出し枠は 1 つずつ払い出される。
    """

    def __init__(
        self,
        min_interval_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleeper: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval_seconds = max(0.0, min_interval_seconds)
        self._clock = clock
        self._sleeper = sleeper
        self._lock = threading.Lock()
        self._last_call: float | None = None

    def acquire(self) -> float:
        """次の呼び出し枠まで待機し、待った秒数を返す。"""

        with self._lock:
            waited = 0.0
            now = self._clock()
            if self._last_call is not None:
                remaining = self.min_interval_seconds - (now - self._last_call)
                if remaining > 0:
                    self._sleeper(remaining)
                    waited = remaining
                    now = self._clock()
            self._last_call = now
            return waited
