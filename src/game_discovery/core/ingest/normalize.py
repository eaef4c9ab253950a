"""カタログ応答を取り込み用 DTO へ正規化する。"""

from __future__ import annotations

from game_discovery.core.models import GamePayload, ReleaseState
from game_discovery.infra.steam.dto import SteamAppDetails


def normalize_app_details(details: SteamAppDetails) -> GamePayload:
    """appdetails を `GamePayload` に変換する。

    メディアはスクリーンショット、動画の順に並べる。同じ入力からは常に同じ値を返す。
    """

    media = tuple(details.screenshots) + tuple(details.movies)
    release_state = ReleaseState.UPCOMING if details.coming_soon else ReleaseState.RELEASED
    return GamePayload(
        app_id=details.app_id,
        title=details.name,
        short_description=details.short_description.strip(),
        detailed_description=details.detailed_description.strip(),
        header_image=details.header_image or None,
        media=media,
        developers=details.developers,
        publishers=details.publishers,
        genres=details.genres,
        categories=details.categories,
        release_state=release_state,
        release_date=details.release_date or None,
        raw_payload=dict(details.raw),
    )


__all__ = ["normalize_app_details"]
