"""共有レイヤの公開インターフェース。"""

from .config import AppSettings, get_settings
from .exceptions import (
    BaseAppError,
    BusyError,
    ConfigurationError,
    DomainError,
    MalformedResponseError,
    NotAGameError,
    NotFoundError,
    RateLimitedError,
    Result,
    TerminalError,
    TransientError,
)
from .logging import configure_logging, get_logger
from .retry import MinIntervalRateLimiter, RateLimiter, RetryExecutor, RetryPolicy
from .types import AppID, BoundedLRUCache, Timestamp, ValueObject, dto_dict, utc_now

__all__ = [
    "AppID",
    "AppSettings",
    "BaseAppError",
    "BoundedLRUCache",
    "BusyError",
    "ConfigurationError",
    "DomainError",
    "MalformedResponseError",
    "MinIntervalRateLimiter",
    "NotAGameError",
    "NotFoundError",
    "RateLimitedError",
    "RateLimiter",
    "Result",
    "RetryExecutor",
    "RetryPolicy",
    "TerminalError",
    "Timestamp",
    "TransientError",
    "ValueObject",
    "configure_logging",
    "dto_dict",
    "get_logger",
    "get_settings",
    "utc_now",
]
