"""Steam ストア API 応答の DTO とパーサー。"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from game_discovery.shared.exceptions import MalformedResponseError, NotAGameError, NotFoundError
from game_discovery.shared.types import DTO

__all__ = [
    "SteamAppDetails",
    "SteamSearchItem",
    "parse_app_details",
    "parse_search_results",
]

_MOVIE_FORMATS: tuple[tuple[str, str | None], ...] = (
    ("hls_h264", None),
    ("dash_h264", None),
    ("dash_av1", None),
    ("mp4", "max"),
    ("mp4", "480"),
    ("webm", "max"),
    ("webm", "480"),
)
_GAME_SEARCH_TYPES = frozenset({"app", "game"})


@dataclass(slots=True)
class SteamAppDetails(DTO):
    """appdetails の正規化済み DTO。"""

    app_id: int
    name: str
    app_type: str
    short_description: str = ""
    detailed_description: str = ""
    header_image: str | None = None
    screenshots: tuple[str, ...] = field(default_factory=tuple)
    movies: tuple[str, ...] = field(default_factory=tuple)
    developers: tuple[str, ...] = field(default_factory=tuple)
    publishers: tuple[str, ...] = field(default_factory=tuple)
    genres: tuple[str, ...] = field(default_factory=tuple)
    categories: tuple[str, ...] = field(default_factory=tuple)
    coming_soon: bool = False
    release_date: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class SteamSearchItem(DTO):
    """storesearch の 1 件。"""

    app_id: int
    name: str
    thumbnail: str | None
    item_type: str


def _load(payload: bytes | str | Mapping[str, Any]) -> Any:
    if isinstance(payload, Mapping):
        return payload
    try:
        return json.loads(payload)
    except (TypeError, ValueError) as exc:
        raise MalformedResponseError("Steam response is not valid JSON") from exc


def _strings(values: Any) -> tuple[str, ...]:
    if not isinstance(values, Sequence) or isinstance(values, (str, bytes)):
        return ()
    return tuple(str(value).strip() for value in values if str(value).strip())


def _descriptions(values: Any) -> tuple[str, ...]:
    if not isinstance(values, Sequence) or isinstance(values, (str, bytes)):
        return ()
    result: list[str] = []
    for item in values:
        if isinstance(item, Mapping) and item.get("description"):
            result.append(str(item["description"]).strip())
    return tuple(result)


def _screenshots(values: Any) -> tuple[str, ...]:
    if not isinstance(values, Sequence) or isinstance(values, (str, bytes)):
        return ()
    urls: list[str] = []
    for item in values:
        if not isinstance(item, Mapping):
            continue
        url = item.get("path_full") or item.get("path_thumbnail")
        if url:
            urls.append(str(url))
    return tuple(urls)


def _movie_url(movie: Mapping[str, Any]) -> str | None:
    for container, quality in _MOVIE_FORMATS:
        source = movie.get(container)
        if quality is None:
            if isinstance(source, str) and source:
                return source
            continue
        if isinstance(source, Mapping) and source.get(quality):
            return str(source[quality])
    return None


def _movies(values: Any) -> tuple[str, ...]:
    if not isinstance(values, Sequence) or isinstance(values, (str, bytes)):
        return ()
    movies = [item for item in values if isinstance(item, Mapping)]
    movies.sort(key=lambda item: (not bool(item.get("highlight")), int(item.get("id") or 0)))
    urls = [_movie_url(movie) for movie in movies]
    return tuple(url for url in urls if url)


def parse_app_details(app_id: int, payload: bytes | str | Mapping[str, Any]) -> SteamAppDetails:
    """appdetails 応答を DTO へ変換する。

    Raises:
        NotFoundError: `success` が false、またはエントリが欠けている場合。
        NotAGameError: エントリ種別が `game` ではない場合。
        MalformedResponseError: 応答の形が想定と異なる場合。
    """

    document = _load(payload)
    if not isinstance(document, Mapping):
        raise MalformedResponseError("appdetails payload must be an object")

    entry = document.get(str(app_id))
    if entry is None:
        raise NotFoundError(f"Steam app {app_id} was not found")
    if not isinstance(entry, Mapping):
        raise MalformedResponseError("appdetails entry must be an object")
    if not entry.get("success"):
        raise NotFoundError(f"Steam app {app_id} was not found")

    data = entry.get("data")
    if not isinstance(data, Mapping):
        raise MalformedResponseError("appdetails entry is missing data")

    app_type = str(data.get("type") or "").lower()
    if app_type != "game":
        raise NotAGameError(f"Steam app {app_id} is a {app_type or 'unknown'} entry")

    name = str(data.get("name") or "").strip()
    if not name:
        raise MalformedResponseError(f"Steam app {app_id} has no name")

    release = data.get("release_date") if isinstance(data.get("release_date"), Mapping) else {}
    release_date = str(release.get("date") or "").strip() or None

    return SteamAppDetails(
        app_id=int(data.get("steam_appid") or app_id),
        name=name,
        app_type=app_type,
        short_description=str(data.get("short_description") or ""),
        detailed_description=str(data.get("detailed_description") or ""),
        header_image=data.get("header_image") or None,
        screenshots=_screenshots(data.get("screenshots")),
        movies=_movies(data.get("movies")),
        developers=_strings(data.get("developers")),
        publishers=_strings(data.get("publishers")),
        genres=_descriptions(data.get("genres")),
        categories=_descriptions(data.get("categories")),
        coming_soon=bool(release.get("coming_soon")),
        release_date=release_date,
        raw=dict(data),
    )


def parse_search_results(payload: bytes | str | Mapping[str, Any]) -> tuple[SteamSearchItem, ...]:
    """storesearch 応答からゲームのみを取り出す。"""

    document = _load(payload)
    if not isinstance(document, Mapping):
        raise MalformedResponseError("storesearch payload must be an object")
    items = document.get("items") or []
    if not isinstance(items, Sequence) or isinstance(items, (str, bytes)):
        raise MalformedResponseError("storesearch items must be a list")

    results: list[SteamSearchItem] = []
    for item in items:
        if not isinstance(item, Mapping):
            continue
        item_type = str(item.get("type") or "").lower()
        if item_type not in _GAME_SEARCH_TYPES:
            continue
        try:
            app_id = int(item.get("id"))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            continue
        name = str(item.get("name") or "").strip()
        if app_id <= 0 or not name:
            continue
        results.append(
            SteamSearchItem(
                app_id=app_id,
                name=name,
                thumbnail=item.get("tiny_image") or None,
                item_type=item_type,
            )
        )
    return tuple(results)
