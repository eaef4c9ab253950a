"""初期スキーマ: games と ingestion_locks"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(),
        nullable=nullable,
        server_default=None if nullable else sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    op.create_table(
        "games",
        sa.Column("app_id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("short_description", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column(
            "detailed_description", sa.Text(), nullable=False, server_default=sa.text("''")
        ),
        sa.Column("header_image", sa.String()),
        sa.Column("media", sa.JSON(), nullable=False),
        sa.Column("developers", sa.JSON(), nullable=False),
        sa.Column("publishers", sa.JSON(), nullable=False),
        sa.Column("genres", sa.JSON(), nullable=False),
        sa.Column("categories", sa.JSON(), nullable=False),
        sa.Column(
            "release_state", sa.String(), nullable=False, server_default=sa.text("'released'")
        ),
        sa.Column("release_date", sa.String()),
        sa.Column("raw_payload", sa.JSON(), nullable=False),
        sa.Column("aesthetic_embedding", sa.LargeBinary()),
        sa.Column("atmosphere_embedding", sa.LargeBinary()),
        sa.Column("mechanics_embedding", sa.LargeBinary()),
        sa.Column("narrative_embedding", sa.LargeBinary()),
        sa.Column("dynamics_embedding", sa.LargeBinary()),
        sa.Column("facet_states", sa.JSON(), nullable=False),
        sa.Column("suggestions", sa.JSON(), nullable=False),
        sa.Column(
            "suggestions_version", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        _timestamp("suggestions_updated_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("idx_games_title", "games", ["title"])

    op.create_table(
        "ingestion_locks",
        sa.Column("lock_key", sa.String(), primary_key=True),
        sa.Column("token", sa.String(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("idx_ingestion_locks_expires_at", "ingestion_locks", ["expires_at"])


def downgrade() -> None:
    op.drop_index("idx_ingestion_locks_expires_at", table_name="ingestion_locks")
    op.drop_table("ingestion_locks")
    op.drop_index("idx_games_title", table_name="games")
    op.drop_table("games")
