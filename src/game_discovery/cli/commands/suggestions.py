from __future__ import annotations

from typing import Annotated, Any

import typer
from rich.table import Table

from game_discovery.shared.exceptions import BaseAppError

from . import common
from .common import OutputFormat

app = typer.Typer(help="候補リストの更新と参照")

OutputOption = Annotated[
    OutputFormat,
    typer.Option("--output", "-o", case_sensitive=False, help="出力形式(table/json)"),
]


def _render_table(title: str, suggestions: list[dict[str, Any]]) -> None:
    table = Table(title=title)
    table.add_column("App ID", style="cyan")
    table.add_column("Title", style="bold")
    table.add_column("Explanation")
    for suggestion in suggestions:
        table.add_row(str(suggestion["appId"]), suggestion["title"], suggestion["explanation"])
    common.console().print(table)


@app.command("refresh")
def refresh(
    identifier: Annotated[str, typer.Argument(help="appId またはストア URL")],
    force: Annotated[
        bool,
        typer.Option("--force", help="新しい候補が得られた場合に既存の候補を置き換える"),
    ] = False,
    output: OutputOption = OutputFormat.TABLE,
) -> None:
    """候補を再生成し、既存のリストとマージする。"""

    with common.engine_session() as engine:
        try:
            payload = engine.refresh(identifier, force=force)
        except BaseAppError as exc:
            raise common.fail(exc) from exc

    if output is OutputFormat.JSON:
        common.echo_json(payload)
        return
    _render_table("Suggestions", payload["suggestions"])
    common.console().print(
        f"new: {payload['newCount']}  queued: {len(payload['queuedForIngestion'])}"
    )


@app.command("show")
def show(
    identifier: Annotated[str, typer.Argument(help="appId またはストア URL")],
    output: OutputOption = OutputFormat.TABLE,
) -> None:
    """保存済みの候補リストを表示する。"""

    with common.engine_session() as engine:
        try:
            payload = engine.suggestions(identifier)
        except BaseAppError as exc:
            raise common.fail(exc) from exc

    if output is OutputFormat.JSON:
        common.echo_json(payload)
        return
    _render_table(f"Suggestions (updated {payload['updatedAt'] or '-'})", payload["suggestions"])
