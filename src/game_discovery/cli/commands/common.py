"""サブコマンド共通のヘルパー。"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any

import typer
from rich.console import Console

from game_discovery.core.engine import RecommendationEngine, build_engine
from game_discovery.shared.config import AppSettings, get_settings
from game_discovery.shared.exceptions import BaseAppError
from game_discovery.shared.logging import configure_from_settings


class OutputFormat(str, Enum):
    """出力形式。"""

    TABLE = "table"
    JSON = "json"


def create_engine(settings: AppSettings) -> RecommendationEngine:
    return build_engine(settings)


def load_settings() -> AppSettings:
    settings = get_settings()
    configure_from_settings(settings)
    return settings


@contextmanager
def engine_session() -> Iterator[RecommendationEngine]:
    """エンジンを生成し、終了時にバックグラウンド処理の完了を待って閉じる。"""

    engine = create_engine(load_settings())
    try:
        yield engine
    finally:
        engine.close()


def console() -> Console:
    return Console(force_terminal=False, color_system=None)


def echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))


def fail(error: BaseAppError) -> typer.Exit:
    typer.echo(f"{error.__class__.__name__}: {error}", err=True)
    return typer.Exit(code=1)
