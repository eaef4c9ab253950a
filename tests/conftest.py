"""テスト全体で共有するフィクスチャ。"""

from __future__ import annotations

import pytest
from pydantic import SecretStr

from game_discovery.infra.db import DatabaseSessionManager, SQLAlchemyGameStore
from game_discovery.shared.config import AppSettings, GeminiSettings, StorageSettings


@pytest.fixture
def app_settings(tmp_path) -> AppSettings:
    return AppSettings(
        gemini=GeminiSettings(api_key=SecretStr("test-key")),
        storage=StorageSettings(
            sqlite_path=tmp_path / "games.sqlite",
            embedding_dimension=3,
            enable_vec_index=False,
        ),
    )


@pytest.fixture
def db_manager(app_settings):
    manager = DatabaseSessionManager(settings=app_settings, load_extension=False)
    manager.create_all()
    yield manager
    manager.close()


@pytest.fixture
def game_store(db_manager) -> SQLAlchemyGameStore:
    return SQLAlchemyGameStore(db_manager, dimension=3, enable_vec_index=False)
