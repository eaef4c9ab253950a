"""structlog の設定と、ログ文脈を扱うヘルパー。

ログは標準エラーへ出す。標準出力は CLI の JSON 出力に使うため汚さない。
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import IO, TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:  # pragma: no cover
    from .config import AppSettings

DEFAULT_LOG_LEVEL = "INFO"

# 外部ライブラリは WARNING 以上だけ通す
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "alembic")

BoundLogger = structlog.stdlib.BoundLogger


def _coerce_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    mapping = logging.getLevelNamesMapping()
    try:
        return mapping[level.upper()]
    except KeyError:
        msg = f"Unsupported log level: {level}"
        raise ValueError(msg) from None


def configure_logging(
    level: str | int = DEFAULT_LOG_LEVEL,
    *,
    json_output: bool = False,
    stream: IO[str] | None = None,
) -> None:
    """structlog と標準 logging をまとめて設定する。

    Args:
        level: 文字列または数値で表現したログレベル。
        json_output: True の場合 1 行 1 JSON で出力する。
        stream: 出力先。省略時は標準エラー。
    """

    log_level = _coerce_level(level)
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        stream=stream or sys.stderr,
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_from_settings(settings: AppSettings) -> None:
    configure_logging(settings.log_level, json_output=settings.log_json)


@contextmanager
def log_context(**values: Any) -> Iterator[None]:
    """ブロック内のログすべてに `values` を付与する。

    contextvars に載るため、`contextvars.copy_context()` 経由で投入した
    バックグラウンド処理にも引き継がれる。
    """

    with structlog.contextvars.bound_contextvars(**values):
        yield


def get_logger(name: str | None = None, **initial_values: Any) -> BoundLogger:
    logger = structlog.stdlib.get_logger(name)
    if initial_values:
        return logger.bind(**initial_values)
    return logger


__all__ = [
    "DEFAULT_LOG_LEVEL",
    "BoundLogger",
    "QUIET_LOGGERS",
    "configure_from_settings",
    "configure_logging",
    "get_logger",
    "log_context",
]
