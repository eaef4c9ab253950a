"""再試行ポリシーとレート制御のテスト。"""

from __future__ import annotations

import pytest

from game_discovery.shared.exceptions import NotFoundError, TerminalError, TransientError
from game_discovery.shared.retry import MinIntervalRateLimiter, RetryExecutor, RetryPolicy


def test_policy_delay_is_capped() -> None:
    policy = RetryPolicy(initial_delay=3.0, multiplier=2.0, max_delay=10.0)

    assert [policy.delay(attempt) for attempt in (1, 2, 3)] == [3.0, 6.0, 10.0]


def test_total_delay_sums_waits_between_attempts() -> None:
    policy = RetryPolicy(max_attempts=5, initial_delay=3.0, multiplier=2.0, max_delay=30.0)

    assert policy.total_delay() == 45.0
    assert RetryPolicy(max_attempts=1).total_delay() == 0


def test_policy_rejects_invalid_attempts() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


def test_executor_retries_transient_errors() -> None:
    waits: list[float] = []
    calls = {"count": 0}

    def operation() -> str:
        calls["count"] += 1
        if calls["count"] < 3:
            raise TransientError("flaky")
        return "ok"

    executor = RetryExecutor(RetryPolicy(max_attempts=3, initial_delay=1.0), sleeper=waits.append)

    assert executor.run(operation) == "ok"
    assert waits == [1.0, 2.0]


def test_executor_raises_terminal_after_budget() -> None:
    def operation() -> str:
        raise TransientError("still down")

    executor = RetryExecutor(RetryPolicy(max_attempts=2, initial_delay=0.0), sleeper=lambda _: None)

    with pytest.raises(TerminalError) as excinfo:
        executor.run(operation, operation_name="steam_appdetails")

    assert isinstance(excinfo.value.__cause__, TransientError)


def test_executor_does_not_retry_other_errors() -> None:
    calls = {"count": 0}

    def operation() -> str:
        calls["count"] += 1
        raise NotFoundError("missing")

    executor = RetryExecutor(RetryPolicy(max_attempts=3), sleeper=lambda _: None)

    with pytest.raises(NotFoundError):
        executor.run(operation)
    assert calls["count"] == 1


def test_min_interval_limiter_waits_between_calls() -> None:
    now = {"value": 100.0}
    waits: list[float] = []

    def sleeper(seconds: float) -> None:
        waits.append(seconds)
        now["value"] += seconds

    limiter = MinIntervalRateLimiter(2.0, clock=lambda: now["value"], sleeper=sleeper)

    assert limiter.acquire() == 0.0
    now["value"] += 0.5
    assert limiter.acquire() == pytest.approx(1.5)
    now["value"] += 5.0
    assert limiter.acquire() == 0.0
    assert waits == [pytest.approx(1.5)]
