from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

import typer
from rich.table import Table

from game_discovery.shared.exceptions import BaseAppError
from game_discovery.shared.logging import get_logger

from . import common
from .common import OutputFormat

app = typer.Typer(help="カタログからのゲーム取り込み")


@dataclass(slots=True)
class IngestItem:
    identifier: str
    app_id: int | None
    title: str | None
    status: str
    message: str | None = None

    def to_payload(self) -> dict[str, object]:
        return {
            "identifier": self.identifier,
            "appId": self.app_id,
            "title": self.title,
            "status": self.status,
            "message": self.message,
        }


def _render_table(items: list[IngestItem]) -> None:
    table = Table(title="Ingestion Results")
    table.add_column("Identifier", style="cyan")
    table.add_column("App ID")
    table.add_column("Title", style="bold")
    table.add_column("Status")
    table.add_column("Message")
    for item in items:
        table.add_row(
            item.identifier,
            str(item.app_id) if item.app_id is not None else "-",
            item.title or "-",
            item.status,
            item.message or "-",
        )
    common.console().print(table)


@app.command("run")
def run(
    identifiers: Annotated[
        list[str],
        typer.Argument(help="appId またはストア URL (複数可)"),
    ],
    force: Annotated[
        bool,
        typer.Option("--force", help="既存レコードがあっても再取得する"),
    ] = False,
    output: Annotated[
        OutputFormat,
        typer.Option("--output", "-o", case_sensitive=False, help="出力形式(table/json)"),
    ] = OutputFormat.TABLE,
) -> None:
    """ゲームを取り込み、ファセット埋め込みを計算する。"""

    logger = get_logger("cli.ingest", force=force)
    items: list[IngestItem] = []
    with common.engine_session() as engine:
        for identifier in identifiers:
            try:
                record = engine.ingest(identifier, force=force)
            except BaseAppError as exc:
                logger.warning("cli_ingest_failed", identifier=identifier, error=str(exc))
                items.append(
                    IngestItem(
                        identifier=identifier,
                        app_id=None,
                        title=None,
                        status="failed",
                        message=f"{exc.__class__.__name__}: {exc}",
                    )
                )
                continue
            items.append(
                IngestItem(
                    identifier=identifier,
                    app_id=record.app_id,
                    title=record.title,
                    status="ingested",
                )
            )

    if output is OutputFormat.JSON:
        common.echo_json([item.to_payload() for item in items])
    else:
        _render_table(items)
    if any(item.status == "failed" for item in items):
        raise typer.Exit(code=1)
