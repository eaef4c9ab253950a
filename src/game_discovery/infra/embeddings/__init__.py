"""ファセット埋め込みプロバイダーの登録と生成。"""

from __future__ import annotations

from collections.abc import Callable

from game_discovery.shared.config import AppSettings, get_settings
from game_discovery.shared.exceptions import ConfigurationError

from .base import EmbeddingJob, EmbeddingServiceProtocol, EmbeddingVector
from .gemini import GeminiEmbeddingService

EmbeddingServiceFactory = Callable[[AppSettings], EmbeddingServiceProtocol]

_PROVIDERS: dict[str, EmbeddingServiceFactory] = {
    GeminiEmbeddingService.provider_name: GeminiEmbeddingService.from_settings,
}


def register_embedding_service(name: str, factory: EmbeddingServiceFactory) -> None:
    _PROVIDERS[name.lower()] = factory


def get_default_embedding_service(settings: AppSettings | None = None) -> EmbeddingServiceProtocol:
    """`embedding_provider` 設定で選ばれたプロバイダーを生成する。"""

    app_settings = settings or get_settings()
    name = app_settings.embedding_provider.lower()
    factory = _PROVIDERS.get(name)
    if factory is None:
        known = ", ".join(sorted(_PROVIDERS))
        raise ConfigurationError(f"Unknown embedding provider '{name}' (known: {known})")
    return factory(app_settings)


__all__ = [
    "EmbeddingJob",
    "EmbeddingServiceFactory",
    "EmbeddingServiceProtocol",
    "EmbeddingVector",
    "get_default_embedding_service",
    "register_embedding_service",
]
