from __future__ import annotations

from typing import Annotated

import typer
from rich.table import Table

from game_discovery.shared.exceptions import BaseAppError

from . import common
from .common import OutputFormat

app = typer.Typer(help="類似ゲーム検索")


@app.command("show")
def show(
    identifier: Annotated[str, typer.Argument(help="appId またはストア URL")],
    facet: Annotated[
        str,
        typer.Option("--facet", "-f", help="ファセット名、または all で重み付き合成"),
    ] = "all",
    limit: Annotated[int | None, typer.Option("--limit", "-l", min=1, help="取得件数")] = None,
    threshold: Annotated[
        float | None,
        typer.Option("--threshold", "-t", min=-1.0, max=1.0, help="類似度の下限"),
    ] = None,
    output: Annotated[
        OutputFormat,
        typer.Option("--output", "-o", case_sensitive=False, help="出力形式(table/json)"),
    ] = OutputFormat.TABLE,
) -> None:
    """指定ゲームに類似するゲームを表示する。"""

    with common.engine_session() as engine:
        try:
            matches = engine.similar(identifier, facet, limit=limit, threshold=threshold)
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
        except BaseAppError as exc:
            raise common.fail(exc) from exc
        titles = {
            app_id: game.title
            for app_id, game in engine.store.get_games(m["identifier"] for m in matches).items()
        }

    if output is OutputFormat.JSON:
        common.echo_json(matches)
        return
    table = Table(title=f"Similar games ({facet})")
    table.add_column("App ID", style="cyan")
    table.add_column("Title", style="bold")
    table.add_column("Score")
    for match in matches:
        table.add_row(
            str(match["identifier"]),
            titles.get(match["identifier"], "-"),
            f"{match['score']:.3f}",
        )
    common.console().print(table)
