from __future__ import annotations

import typer

from game_discovery.cli.commands import db, embeddings, ingest, similar, suggestions
from game_discovery.shared.logging import configure_logging

app = typer.Typer(help="インディーゲーム推薦エンジンの CLI")

app.add_typer(ingest.app, name="ingest", help="カタログからの取り込み")
app.add_typer(suggestions.app, name="suggestions", help="候補リストの更新と参照")
app.add_typer(similar.app, name="similar", help="類似ゲーム検索")
app.add_typer(embeddings.app, name="embeddings", help="ファセット埋め込みの管理")
app.add_typer(db.app, name="db", help="データベースの管理")


def main() -> None:
    """エントリポイント。"""

    configure_logging()
    app()


if __name__ == "__main__":  # pragma: no cover - CLI エントリ
    main()
