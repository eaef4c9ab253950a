"""DB 向けインフラ。"""

from .game_store import (
    EmbeddingCoverage,
    GameStore,
    GameStoreError,
    SQLAlchemyGameStore,
    cosine_similarity,
)
from .locks import IngestionLockProtocol, SQLAlchemyIngestionLock, lock_key_for
from .models import FACET_COLUMNS, Base, Game, IngestionLock
from .session import DatabaseError, DatabaseSessionManager

__all__ = [
    "Base",
    "DatabaseError",
    "DatabaseSessionManager",
    "EmbeddingCoverage",
    "FACET_COLUMNS",
    "Game",
    "GameStore",
    "GameStoreError",
    "IngestionLock",
    "IngestionLockProtocol",
    "SQLAlchemyGameStore",
    "SQLAlchemyIngestionLock",
    "cosine_similarity",
    "lock_key_for",
]
