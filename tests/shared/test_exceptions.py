from __future__ import annotations

import pytest

from game_discovery.shared.exceptions import (
    BusyError,
    NotAGameError,
    NotFoundError,
    RateLimitedError,
    Result,
    TransientError,
)


def test_result_requires_exactly_one_side() -> None:
    with pytest.raises(ValueError):
        Result()
    with pytest.raises(ValueError):
        Result(value=1, error=BusyError())


def test_or_raise_returns_value_or_raises_carried_error() -> None:
    error = NotAGameError("620 is DLC")

    assert Result.ok(42).or_raise() == 42
    with pytest.raises(NotFoundError, match="620 is DLC"):
        Result.err(error).or_raise()
    with pytest.raises(RuntimeError):
        Result.err(error).unwrap()


def test_rate_limited_is_transient_and_keeps_status() -> None:
    error = RateLimitedError(status_code=429)

    assert isinstance(error, TransientError)
    assert error.status_code == 429
    assert str(error) == "Upstream rate limit exceeded"
