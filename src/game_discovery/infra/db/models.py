"""DB スキーマの SQLAlchemy モデル。"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    DateTime,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, CreatedAtMixin

FACET_COLUMNS: dict[str, str] = {
    "aesthetic": "aesthetic_embedding",
    "atmosphere": "atmosphere_embedding",
    "mechanics": "mechanics_embedding",
    "narrative": "narrative_embedding",
    "dynamics": "dynamics_embedding",
}


class Game(CreatedAtMixin, Base):
    __tablename__ = "games"

    app_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    short_description: Mapped[str] = mapped_column(
        Text, nullable=False, server_default=text("''")
    )
    detailed_description: Mapped[str] = mapped_column(
        Text, nullable=False, server_default=text("''")
    )
    header_image: Mapped[str | None] = mapped_column(String)
    media: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    developers: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    publishers: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    genres: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    categories: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    release_state: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'released'")
    )
    release_date: Mapped[str | None] = mapped_column(String)
    raw_payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    aesthetic_embedding: Mapped[bytes | None] = mapped_column(LargeBinary)
    atmosphere_embedding: Mapped[bytes | None] = mapped_column(LargeBinary)
    mechanics_embedding: Mapped[bytes | None] = mapped_column(LargeBinary)
    narrative_embedding: Mapped[bytes | None] = mapped_column(LargeBinary)
    dynamics_embedding: Mapped[bytes | None] = mapped_column(LargeBinary)
    facet_states: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    suggestions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    suggestions_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    suggestions_updated_at: Mapped[datetime | None] = mapped_column(DateTime)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    __table_args__ = (Index("idx_games_title", "title"),)


class IngestionLock(CreatedAtMixin, Base):
    __tablename__ = "ingestion_locks"

    lock_key: Mapped[str] = mapped_column(String, primary_key=True)
    token: Mapped[str] = mapped_column(String, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (Index("idx_ingestion_locks_expires_at", "expires_at"),)


__all__ = [
    "Base",
    "FACET_COLUMNS",
    "Game",
    "IngestionLock",
]
