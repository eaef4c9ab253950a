"""Steam の URL や入力文字列から appId を取り出す。"""

from __future__ import annotations

import re

from game_discovery.shared.exceptions import NotFoundError

_URL_PATTERNS = (
    re.compile(r"store\.steampowered\.com/app/(\d+)", re.IGNORECASE),
    re.compile(r"steamcommunity\.com/app/(\d+)", re.IGNORECASE),
    re.compile(r"/app/(\d+)", re.IGNORECASE),
)
_BARE_ID = re.compile(r"^\d+$")


def parse_app_identifier(value: str | int) -> int:
    """数値または Steam の URL から appId を取り出す。

    解釈できない入力は `NotFoundError` とする。
    """

    if isinstance(value, bool):
        raise NotFoundError(f"Invalid Steam identifier: {value!r}")
    if isinstance(value, int):
        if value > 0:
            return value
        raise NotFoundError(f"Invalid Steam identifier: {value}")

    text = str(value).strip()
    if _BARE_ID.match(text):
        app_id = int(text)
        if app_id > 0:
            return app_id
        raise NotFoundError(f"Invalid Steam identifier: {value}")

    for pattern in _URL_PATTERNS:
        match = pattern.search(text)
        if match:
            app_id = int(match.group(1))
            if app_id > 0:
                return app_id
    raise NotFoundError(f"Invalid Steam identifier: {value!r}")


def store_url(app_id: int) -> str:
    return f"https://store.steampowered.com/app/{app_id}/"


__all__ = ["parse_app_identifier", "store_url"]
