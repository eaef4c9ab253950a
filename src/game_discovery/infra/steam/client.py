"""Steam ストア API クライアント実装。"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

import httpx

from game_discovery.infra.steam.dto import (
    SteamAppDetails,
    SteamSearchItem,
    parse_app_details,
    parse_search_results,
)
from game_discovery.shared.config import AppSettings, get_settings
from game_discovery.shared.exceptions import (
    NotFoundError,
    RateLimitedError,
    TerminalError,
    TransientError,
)
from game_discovery.shared.logging import BoundLogger, get_logger
from game_discovery.shared.retry import MinIntervalRateLimiter, RetryExecutor, RetryPolicy
from game_discovery.shared.types import BoundedLRUCache

__all__ = [
    "CatalogClientProtocol",
    "SteamCatalogClient",
    "build_steam_client",
]

_SERVER_ERROR_THRESHOLD = 500


class CatalogClientProtocol(Protocol):
    """core 層から利用するカタログのプロトコル。"""

    def fetch_app_details(self, app_id: int) -> SteamAppDetails:
        """appId からゲーム詳細を取得する。"""

    def search(self, term: str) -> tuple[SteamSearchItem, ...]:
        """タイトル文字列でゲームを検索する。"""


class SteamCatalogClient(CatalogClientProtocol):
    """Steam ストアの appdetails/storesearch を呼び出すクライアント。

    連続する呼び出しの間に最小間隔を挟み、一時的な失敗は `RetryExecutor` で
    指数バックオフしながら再試行する。検索結果はインスタンスごとの LRU に保持する。
    """

    def __init__(
        self,
        *,
        http_client: httpx.Client,
        language: str = "english",
        country_code: str = "US",
        retry_executor: RetryExecutor | None = None,
        rate_limiter: MinIntervalRateLimiter | None = None,
        search_cache: BoundedLRUCache[str, tuple[SteamSearchItem, ...]] | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        self._http = http_client
        self._language = language
        self._country_code = country_code
        self._retry_executor = retry_executor or RetryExecutor(RetryPolicy())
        self._rate_limiter = rate_limiter or MinIntervalRateLimiter(0.0)
        self._search_cache = search_cache if search_cache is not None else BoundedLRUCache(256)
        self._logger = logger or get_logger(__name__, component="steam-client")

    def fetch_app_details(self, app_id: int) -> SteamAppDetails:
        params = {"appids": str(app_id), "l": self._language}
        payload = self._retry_executor.run(
            lambda: self._get("/api/appdetails", params=params, endpoint="appdetails"),
            operation_name="steam_appdetails",
        )
        details = parse_app_details(app_id, payload)
        self._logger.debug("steam_appdetails_loaded", app_id=app_id, name=details.name)
        return details

    def search(self, term: str) -> tuple[SteamSearchItem, ...]:
        normalized = " ".join(term.split()).lower()
        if not normalized:
            return ()
        cached = self._search_cache.get(normalized)
        if cached is not None:
            self._logger.debug("steam_search_cache_hit", term=normalized)
            return cached

        params = {"term": term.strip(), "l": self._language, "cc": self._country_code}
        payload = self._retry_executor.run(
            lambda: self._get("/api/storesearch/", params=params, endpoint="storesearch"),
            operation_name="steam_search",
        )
        results = parse_search_results(payload)
        self._search_cache.put(normalized, results)
        return results

    def close(self) -> None:
        self._http.close()

    def _get(self, path: str, *, params: dict[str, str], endpoint: str) -> bytes:
        self._rate_limiter.acquire()
        self._logger.debug("steam_request", endpoint=endpoint, params=params)
        try:
            response = self._http.get(path, params=params)
        except httpx.TimeoutException as exc:
            raise TransientError(f"Steam {endpoint} timed out") from exc
        except httpx.TransportError as exc:
            raise TransientError(f"Steam {endpoint} transport error: {exc}") from exc

        status = response.status_code
        if status == 429 or (status == 403 and endpoint == "storesearch"):
            self._logger.warning("steam_rate_limited", endpoint=endpoint, status_code=status)
            raise RateLimitedError(f"Steam {endpoint} rate limited", status_code=status)
        if status >= _SERVER_ERROR_THRESHOLD:
            raise TransientError(f"Steam {endpoint} failed (status={status})", status_code=status)
        if status == 404:
            raise NotFoundError(f"Steam {endpoint} returned 404")
        if status >= 400:
            raise TerminalError(f"Steam {endpoint} request failed (status={status})")
        return response.content


def build_steam_client(
    *,
    settings: AppSettings | None = None,
    http_client: httpx.Client | None = None,
    sleep_func: Callable[[float], None] | None = None,
    logger: BoundLogger | None = None,
) -> SteamCatalogClient:
    """共有設定から Steam クライアントを構築するファクトリ。"""

    app_settings = settings or get_settings()
    steam = app_settings.steam
    client = http_client or httpx.Client(
        base_url=str(steam.store_base_url),
        timeout=steam.timeout_seconds,
        headers={"Accept": "application/json"},
    )
    retry_kwargs = {"sleeper": sleep_func} if sleep_func is not None else {}
    limiter_kwargs = {"sleeper": sleep_func} if sleep_func is not None else {}
    return SteamCatalogClient(
        http_client=client,
        language=steam.language,
        country_code=steam.country_code,
        retry_executor=RetryExecutor(steam.retry.to_policy(), **retry_kwargs),
        rate_limiter=MinIntervalRateLimiter(steam.min_request_interval_seconds, **limiter_kwargs),
        search_cache=BoundedLRUCache(steam.search_cache_size),
        logger=logger,
    )
