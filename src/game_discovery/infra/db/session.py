"""SQLAlchemy エンジンとセッションの管理。"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import sqlite_vec
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from game_discovery.shared.config import AppSettings, get_settings
from game_discovery.shared.exceptions import BaseAppError
from game_discovery.shared.logging import BoundLogger, get_logger

from .base import Base


class DatabaseError(BaseAppError):
    """DB 管理に関する例外。"""

    default_message = "Database operation failed"


class DatabaseSessionManager:
    """SQLAlchemy エンジン・セッション、Alembic 実行、sqlite-vec のロードを担う。"""

    _ALEMBIC_SCRIPT_DIR = Path(__file__).parent / "alembic"

    def __init__(
        self,
        db_path: Path | None = None,
        *,
        settings: AppSettings | None = None,
        load_extension: bool | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        resolved_path = db_path or self._settings.storage.sqlite_path
        self._db_path = Path(resolved_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._load_extension = (
            self._settings.storage.enable_vec_index if load_extension is None else load_extension
        )
        self._extension_loaded = False
        self._logger = logger or get_logger(__name__, component="db")
        self._engine = self._create_engine()
        self._session_factory = sessionmaker(
            self._engine,
            autoflush=False,
            expire_on_commit=False,
            future=True,
        )

    @property
    def url(self) -> str:
        return str(URL.create("sqlite", database=str(self._db_path)))

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def session_factory(self) -> sessionmaker[Session]:
        return self._session_factory

    @property
    def extension_loaded(self) -> bool:
        return self._extension_loaded

    @contextmanager
    def session(self) -> Iterator[Session]:
        with self._session_factory() as session:
            yield session

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        with self._session_factory.begin() as session:
            yield session

    def initialize_schema(self, revision: str = "head") -> None:
        """Alembic でスキーマを最新化する。"""

        config = Config()
        config.set_main_option("script_location", str(self._ALEMBIC_SCRIPT_DIR))
        config.set_main_option("sqlalchemy.url", self.url)
        with self._engine.begin() as connection:
            config.attributes["connection"] = connection
            command.upgrade(config, revision)
        self._logger.info("db_schema_upgraded", revision=revision, path=str(self._db_path))

    def create_all(self) -> None:
        """マイグレーションを介さずにテーブルを作成する (テスト用途)。"""

        Base.metadata.create_all(self._engine)

    def ensure_vec_index(self, *, table_name: str, column: str, dimension: int) -> bool:
        """vec0 仮想テーブルを生成し、利用可能かを返す。"""

        if not self._load_extension:
            return False
        ddl = (
            f"CREATE VIRTUAL TABLE IF NOT EXISTS {table_name} "
            f"USING vec0({column} float[{dimension}] distance_metric=cosine)"
        )
        try:
            with self._engine.begin() as conn:
                conn.execute(text(ddl))
        except OperationalError as exc:
            self._logger.warning("sqlite_vec_table_init_failed", table=table_name, error=str(exc))
            return False
        return True

    def close(self) -> None:
        self._engine.dispose()

    def _create_engine(self) -> Engine:
        engine = create_engine(
            self.url,
            future=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        event.listen(engine, "connect", self._on_connect)
        return engine

    def _on_connect(
        self,
        dbapi_conn: sqlite3.Connection,
        _,
    ) -> None:  # pragma: no cover - DBAPI hook
        dbapi_conn.execute("PRAGMA foreign_keys = ON;")
        if not self._load_extension:
            return
        try:
            dbapi_conn.enable_load_extension(True)
            dbapi_conn.load_extension(sqlite_vec.loadable_path())
        except (AttributeError, sqlite3.OperationalError) as exc:
            # enable_load_extension を持たない Python ビルドもある
            self._logger.warning("sqlite_vec_extension_load_failed", error=str(exc))
            return
        else:
            self._extension_loaded = True
        finally:
            if hasattr(dbapi_conn, "enable_load_extension"):
                dbapi_conn.enable_load_extension(False)


__all__ = ["DatabaseError", "DatabaseSessionManager"]
