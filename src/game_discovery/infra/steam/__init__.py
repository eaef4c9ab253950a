"""Steam ストア API 向け infra 層パッケージ。"""

from .client import CatalogClientProtocol, SteamCatalogClient, build_steam_client
from .dto import SteamAppDetails, SteamSearchItem, parse_app_details, parse_search_results
from .urls import parse_app_identifier, store_url

__all__ = [
    "CatalogClientProtocol",
    "SteamAppDetails",
    "SteamCatalogClient",
    "SteamSearchItem",
    "build_steam_client",
    "parse_app_details",
    "parse_app_identifier",
    "parse_search_results",
    "store_url",
]
