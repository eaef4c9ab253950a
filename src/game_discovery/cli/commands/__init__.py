"""CLI サブコマンド群。"""

from . import db, embeddings, ingest, similar, suggestions

__all__ = ["db", "embeddings", "ingest", "similar", "suggestions"]
