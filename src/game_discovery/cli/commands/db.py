from __future__ import annotations

from typing import Annotated

import typer

from game_discovery.infra.db.session import DatabaseSessionManager

from . import common

app = typer.Typer(help="データベースの管理")


@app.command("upgrade")
def upgrade(
    revision: Annotated[str, typer.Option("--revision", "-r", help="適用先のリビジョン")] = "head",
) -> None:
    """Alembic マイグレーションを適用する。"""

    settings = common.load_settings()
    manager = DatabaseSessionManager(settings=settings)
    try:
        manager.initialize_schema(revision)
    finally:
        manager.close()
    typer.echo(f"database upgraded to {revision}: {settings.storage.sqlite_path}")
