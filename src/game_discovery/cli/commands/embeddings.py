from __future__ import annotations

from typing import Annotated

import typer
from rich.table import Table

from game_discovery.core.models import Facet

from . import common
from .common import OutputFormat

app = typer.Typer(help="ファセット埋め込みの管理")

OutputOption = Annotated[
    OutputFormat,
    typer.Option("--output", "-o", case_sensitive=False, help="出力形式(table/json)"),
]


@app.command("backfill")
def backfill(
    app_ids: Annotated[
        list[int] | None,
        typer.Option("--app-id", help="対象の appId (省略時は全件)"),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", help="最新の状態でも再計算する"),
    ] = False,
    output: OutputOption = OutputFormat.TABLE,
) -> None:
    """未計算・stale のファセット埋め込みを計算する。"""

    with common.engine_session() as engine:
        totals = engine.backfill_embeddings(app_ids or None, force=force)

    if output is OutputFormat.JSON:
        common.echo_json(totals)
    else:
        table = Table(title="Embedding Backfill")
        table.add_column("Outcome", style="cyan")
        table.add_column("Count")
        for status, count in totals.items():
            table.add_row(status, str(count))
        common.console().print(table)
    if totals.get("failed"):
        raise typer.Exit(code=1)


@app.command("coverage")
def coverage(output: OutputOption = OutputFormat.TABLE) -> None:
    """ファセットごとの計算済み・no_signal・未計算の件数を表示する。"""

    with common.engine_session() as engine:
        report = engine.coverage()

    rows = [
        {
            "facet": facet.value,
            "computed": report.computed.get(facet.value, 0),
            "noSignal": report.no_signal.get(facet.value, 0),
            "missing": report.missing(facet),
        }
        for facet in Facet
    ]
    if output is OutputFormat.JSON:
        common.echo_json({"totalGames": report.total_games, "facets": rows})
        return
    table = Table(title=f"Embedding Coverage ({report.total_games} games)")
    table.add_column("Facet", style="cyan")
    table.add_column("Computed")
    table.add_column("No signal")
    table.add_column("Missing")
    for row in rows:
        table.add_row(row["facet"], str(row["computed"]), str(row["noSignal"]), str(row["missing"]))
    common.console().print(table)
