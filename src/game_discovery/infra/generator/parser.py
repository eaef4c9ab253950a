"""生成モデルの自由記述から候補リストを取り出すパーサー。

まず本文中に埋め込まれた JSON (配列、または `suggestions` を持つオブジェクト) を探し、
見つからなければ `タイトル, appId, 説明` 形式の行を読む。形が崩れた JSON は
候補ゼロ件として扱い、呼び出し側へ例外を漏らさない。
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from game_discovery.shared.types import DTO

__all__ = [
    "ParseResult",
    "ParseStatus",
    "SuggestionCandidate",
    "parse_suggestions",
]

MAX_LINE_LENGTH = 100

_JSON_DECODER = json.JSONDecoder()
_JSON_START = re.compile(r"[\[{]")
_NUMBERED_PREFIX = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s*")
_CITATION = re.compile(r"\[\d+(?:\s*,\s*\d+)*\]")
_EMPHASIS = re.compile(r"\*\*|__|`")
_HEADER_WORDS = ("title", "example", "format")
_ID_KEYS = ("appId", "app_id", "appid", "steam_appid", "steamAppId", "id")
_REASON_KEYS = ("explanation", "reason")


class ParseStatus(StrEnum):
    SUCCESS = "success"
    EMPTY = "empty"
    MALFORMED = "malformed"


@dataclass(slots=True)
class SuggestionCandidate(DTO):
    """生成モデルが挙げた候補 1 件。appId は任意。"""

    title: str
    reason: str
    app_id: int | None = None


@dataclass(slots=True)
class ParseResult(DTO):
    """パース結果のタグ付き値。"""

    status: ParseStatus
    candidates: tuple[SuggestionCandidate, ...] = field(default_factory=tuple)
    detail: str | None = None

    @classmethod
    def success(cls, candidates: Sequence[SuggestionCandidate]) -> ParseResult:
        if not candidates:
            return cls.empty()
        return cls(status=ParseStatus.SUCCESS, candidates=tuple(candidates))

    @classmethod
    def empty(cls, detail: str | None = None) -> ParseResult:
        return cls(status=ParseStatus.EMPTY, detail=detail)

    @classmethod
    def malformed(cls, detail: str) -> ParseResult:
        return cls(status=ParseStatus.MALFORMED, detail=detail)

    @property
    def is_success(self) -> bool:
        return self.status is ParseStatus.SUCCESS


class _ShapeError(ValueError):
    pass


def _clean_text(text: str) -> str:
    cleaned = _CITATION.sub("", text)
    cleaned = _EMPHASIS.sub("", cleaned)
    return " ".join(cleaned.split())


def _coerce_app_id(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise _ShapeError("appId must be an integer")
    if isinstance(value, int):
        app_id = value
    elif isinstance(value, str) and value.strip().isdigit():
        app_id = int(value.strip())
    else:
        raise _ShapeError(f"appId must be an integer: {value!r}")
    if app_id <= 0:
        raise _ShapeError("appId must be positive")
    return app_id


def _candidate_from_mapping(item: Any) -> SuggestionCandidate:
    if not isinstance(item, Mapping):
        raise _ShapeError("suggestion entries must be objects")
    title = item.get("title")
    if not isinstance(title, str) or not title.strip():
        raise _ShapeError("suggestion title must be a non-empty string")
    reason = next((item[key] for key in _REASON_KEYS if key in item), None)
    if not isinstance(reason, str):
        raise _ShapeError("suggestion explanation must be a string")
    raw_id = next((item[key] for key in _ID_KEYS if key in item), None)
    return SuggestionCandidate(
        title=_clean_text(title),
        reason=_clean_text(reason),
        app_id=_coerce_app_id(raw_id),
    )


def _iter_json_candidates(text: str) -> Iterator[Any]:
    """テキスト内の JSON 配列・オブジェクト候補を出現順に取り出す。"""

    position = 0
    while True:
        match = _JSON_START.search(text, position)
        if match is None:
            return
        try:
            payload, end = _JSON_DECODER.raw_decode(text, match.start())
        except json.JSONDecodeError:
            position = match.start() + 1
            continue
        yield payload
        position = end


def _items_from_payload(payload: Any) -> list[Any] | None:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        for key in ("suggestions", "games", "results"):
            value = payload.get(key)
            if isinstance(value, list):
                return value
        if "title" in payload:
            return [payload]
    return None


def _parse_json(text: str) -> ParseResult | None:
    for payload in _iter_json_candidates(text):
        items = _items_from_payload(payload)
        if items is None or (items and not any(isinstance(item, Mapping) for item in items)):
            continue
        try:
            candidates = [_candidate_from_mapping(item) for item in items]
        except _ShapeError as exc:
            return ParseResult.malformed(str(exc))
        return ParseResult.success(candidates)
    return None


def _is_header(line: str) -> bool:
    lowered = line.lower()
    return any(lowered.startswith(word) for word in _HEADER_WORDS)


def _parse_line(line: str) -> SuggestionCandidate | None:
    cleaned = _clean_text(_NUMBERED_PREFIX.sub("", line))
    if not cleaned or len(cleaned) >= MAX_LINE_LENGTH or _is_header(cleaned):
        return None
    parts = [part.strip() for part in cleaned.split(",")]
    if len(parts) < 3:
        return None
    title = ", ".join(parts[:-2]).strip()
    raw_id, reason = parts[-2], parts[-1]
    if not title or not reason or not raw_id.isdigit() or int(raw_id) <= 0:
        return None
    return SuggestionCandidate(title=title, reason=reason, app_id=int(raw_id))


def _parse_lines(text: str) -> list[SuggestionCandidate]:
    candidates: list[SuggestionCandidate] = []
    for line in text.splitlines():
        candidate = _parse_line(line)
        if candidate is not None:
            candidates.append(candidate)
    return candidates


def parse_suggestions(text: str | None) -> ParseResult:
    """生成モデルの応答文字列を `ParseResult` に変換する。"""

    if text is None or not text.strip():
        return ParseResult.empty("response was empty")

    parsed = _parse_json(text)
    if parsed is not None:
        return parsed

    candidates = _parse_lines(text)
    if candidates:
        return ParseResult.success(candidates)
    return ParseResult.malformed("no suggestion list found in response")
