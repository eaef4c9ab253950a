"""推薦エンジンが扱うドメインモデル。"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from game_discovery.shared.types import DTO, Timestamp

__all__ = [
    "Facet",
    "FacetState",
    "FacetStatus",
    "GamePayload",
    "GameRecord",
    "ReleaseState",
    "Suggestion",
    "SuggestionSnapshot",
]


class Facet(StrEnum):
    """比較に用いる意味的な軸。集合は閉じており、追加時は全件の再計算が必要。"""

    AESTHETIC = "aesthetic"
    ATMOSPHERE = "atmosphere"
    MECHANICS = "mechanics"
    NARRATIVE = "narrative"
    DYNAMICS = "dynamics"

    @classmethod
    def parse(cls, value: str | Facet) -> Facet:
        if isinstance(value, Facet):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError as exc:
            msg = f"Unknown facet: {value}"
            raise ValueError(msg) from exc


class FacetStatus(StrEnum):
    """保存済みファセットの状態。未計算はエントリ自体が存在しない。"""

    COMPUTED = "computed"
    NO_SIGNAL = "no_signal"


class ReleaseState(StrEnum):
    RELEASED = "released"
    UPCOMING = "upcoming"


@dataclass(slots=True)
class FacetState(DTO):
    """ファセット埋め込みの計算履歴。"""

    status: FacetStatus
    rule_version: int
    text_hash: str
    model: str | None = None
    dimension: int | None = None
    computed_at: str | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> FacetState:
        return cls(
            status=FacetStatus(payload["status"]),
            rule_version=int(payload["rule_version"]),
            text_hash=str(payload["text_hash"]),
            model=payload.get("model"),
            dimension=payload.get("dimension"),
            computed_at=payload.get("computed_at"),
        )

    def to_mapping(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "rule_version": self.rule_version,
            "text_hash": self.text_hash,
            "model": self.model,
            "dimension": self.dimension,
            "computed_at": self.computed_at,
        }


@dataclass(slots=True)
class Suggestion(DTO):
    """ソースから対象ゲームへの説明付きの有向リンク。"""

    app_id: int
    title: str
    explanation: str

    def __post_init__(self) -> None:
        if int(self.app_id) <= 0:
            msg = "app_id must be a positive integer"
            raise ValueError(msg)
        object.__setattr__(self, "app_id", int(self.app_id))
        object.__setattr__(self, "title", str(self.title).strip())
        object.__setattr__(self, "explanation", str(self.explanation).strip())

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> Suggestion:
        app_id = payload.get("appId", payload.get("app_id"))
        return cls(
            app_id=int(app_id),  # type: ignore[arg-type]
            title=str(payload.get("title") or ""),
            explanation=str(payload.get("explanation") or ""),
        )

    def to_payload(self) -> dict[str, Any]:
        return {"appId": self.app_id, "title": self.title, "explanation": self.explanation}


def _clean_strings(values: Sequence[str] | None) -> tuple[str, ...]:
    if not values:
        return ()
    cleaned: list[str] = []
    for value in values:
        text = str(value).strip()
        if text and text not in cleaned:
            cleaned.append(text)
    return tuple(cleaned)


@dataclass(slots=True)
class GamePayload(DTO):
    """カタログ応答を正規化した取り込み用 DTO。"""

    app_id: int
    title: str
    short_description: str = ""
    detailed_description: str = ""
    header_image: str | None = None
    media: tuple[str, ...] = field(default_factory=tuple)
    developers: tuple[str, ...] = field(default_factory=tuple)
    publishers: tuple[str, ...] = field(default_factory=tuple)
    genres: tuple[str, ...] = field(default_factory=tuple)
    categories: tuple[str, ...] = field(default_factory=tuple)
    release_state: ReleaseState = ReleaseState.RELEASED
    release_date: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.app_id <= 0:
            msg = "app_id must be a positive integer"
            raise ValueError(msg)
        if not self.title.strip():
            msg = "title is required"
            raise ValueError(msg)
        object.__setattr__(self, "title", self.title.strip())
        for name in ("media", "developers", "publishers", "genres", "categories"):
            object.__setattr__(self, name, _clean_strings(getattr(self, name)))
        object.__setattr__(self, "raw_payload", dict(self.raw_payload))


@dataclass(slots=True)
class GameRecord(DTO):
    """ストアから読み出したゲーム。"""

    app_id: int
    title: str
    short_description: str
    detailed_description: str
    header_image: str | None
    media: tuple[str, ...]
    developers: tuple[str, ...]
    publishers: tuple[str, ...]
    genres: tuple[str, ...]
    categories: tuple[str, ...]
    release_state: ReleaseState
    release_date: str | None
    raw_payload: dict[str, Any]
    embeddings: dict[Facet, tuple[float, ...]] = field(default_factory=dict)
    facet_states: dict[Facet, FacetState] = field(default_factory=dict)
    suggestions: tuple[Suggestion, ...] = field(default_factory=tuple)
    suggestions_version: int = 0
    suggestions_updated_at: Timestamp | None = None
    created_at: Timestamp | None = None
    updated_at: Timestamp | None = None

    @property
    def is_complete(self) -> bool:
        return bool(self.title.strip())

    @property
    def primary_image(self) -> str | None:
        if self.header_image:
            return self.header_image
        for url in self.media:
            if not url.endswith((".m3u8", ".mpd", ".mp4", ".webm")):
                return url
        return None


@dataclass(slots=True)
class SuggestionSnapshot(DTO):
    """compare-and-swap 用に読み出した候補リストと版数。"""

    app_id: int
    suggestions: tuple[Suggestion, ...]
    version: int
    updated_at: datetime | None = None

    def lists(self, target_app_id: int) -> bool:
        return any(item.app_id == target_app_id for item in self.suggestions)
