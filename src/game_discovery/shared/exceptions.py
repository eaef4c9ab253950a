"""共通例外と結果型。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar


class BaseAppError(Exception):
    """全レイヤで共有するベース例外。"""

    default_message = "An unexpected error occurred"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class ConfigurationError(BaseAppError):
    """設定読み込みや不足を示すエラー。"""

    default_message = "Configuration is invalid or missing"


class DomainError(BaseAppError):
    """ドメイン層で利用する基底例外。"""

    default_message = "Domain layer error"


class NotFoundError(DomainError):
    """識別子に対応するカタログエントリが存在しない。"""

    default_message = "Catalog entry was not found"


class NotAGameError(NotFoundError):
    """DLC やデモなどゲーム以外のエントリ。"""

    default_message = "Catalog entry is not a game"


class BusyError(DomainError):
    """ロック競合やポーリング上限に達したことを示す。"""

    default_message = "Resource is busy"


class TransientError(BaseAppError):
    """ネットワーク障害など、再試行で回復しうるエラー。"""

    default_message = "Transient upstream failure"

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(TransientError):
    """上流のレート制限。"""

    default_message = "Upstream rate limit exceeded"


class MalformedResponseError(BaseAppError):
    """カタログや生成モデルの応答を解釈できない。"""

    default_message = "Upstream response could not be parsed"


class TerminalError(BaseAppError):
    """再試行予算を使い切った、または回復不能な失敗。"""

    default_message = "Operation failed permanently"


T = TypeVar("T")
E = TypeVar("E", bound=BaseAppError)


@dataclass(slots=True)
class Result(Generic[T, E]):
    """成功/失敗を同一インターフェースで扱う結果型。"""

    value: T | None = None
    error: E | None = None

    def __post_init__(self) -> None:
        if (self.value is None) == (self.error is None):
            msg = "Result must contain either value or error"
            raise ValueError(msg)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    @property
    def is_err(self) -> bool:
        return self.error is not None

    def unwrap(self) -> T:
        if self.value is None:
            msg = "Cannot unwrap error result"
            raise RuntimeError(msg)
        return self.value

    def unwrap_err(self) -> E:
        if self.error is None:
            msg = "Cannot unwrap ok result"
            raise RuntimeError(msg)
        return self.error

    def or_raise(self) -> T:
        """成功なら値を返し、失敗なら保持している例外をそのまま送出する。"""

        if self.error is not None:
            raise self.error
        return self.unwrap()

    @classmethod
    def ok(cls, value: T) -> Result[T, E]:
        return cls(value=value)

    @classmethod
    def err(cls, error: E) -> Result[T, E]:
        return cls(error=error)


__all__ = [
    "BaseAppError",
    "BusyError",
    "ConfigurationError",
    "DomainError",
    "MalformedResponseError",
    "NotAGameError",
    "NotFoundError",
    "RateLimitedError",
    "Result",
    "TerminalError",
    "TransientError",
]
