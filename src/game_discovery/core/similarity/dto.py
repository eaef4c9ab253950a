"""類似度検索の DTO。"""

from __future__ import annotations

from dataclasses import dataclass, field

from game_discovery.core.models import Facet
from game_discovery.shared.types import DTO, Timestamp, utc_now

__all__ = [
    "ALL_FACETS",
    "SimilarCandidate",
    "SimilarityQuery",
    "SimilarityResult",
    "parse_facet_mode",
]

ALL_FACETS = "all"


def parse_facet_mode(value: str | Facet | None) -> Facet | None:
    """`"all"` (または None) は重み付き全ファセット、それ以外は単一ファセット。"""

    if value is None:
        return None
    if isinstance(value, Facet):
        return value
    if value.strip().lower() == ALL_FACETS:
        return None
    return Facet.parse(value)


@dataclass(slots=True)
class SimilarityQuery(DTO):
    """類似度検索の入力。facet が None なら重み付き合成。"""

    app_id: int
    facet: Facet | None = None
    limit: int = 12
    threshold: float = 0.5

    def __post_init__(self) -> None:
        if self.app_id <= 0:
            msg = "app_id must be a positive integer"
            raise ValueError(msg)
        if self.limit <= 0:
            msg = "limit must be a positive integer"
            raise ValueError(msg)
        if not -1.0 <= self.threshold <= 1.0:
            msg = "threshold must be within [-1, 1]"
            raise ValueError(msg)

    @property
    def mode(self) -> str:
        return self.facet.value if self.facet is not None else ALL_FACETS


@dataclass(slots=True)
class SimilarCandidate(DTO):
    """候補ゲームとスコア。facet_scores は合成に使った各ファセットの類似度。"""

    app_id: int
    score: float
    facet_scores: dict[str, float] = field(default_factory=dict)

    def to_payload(self) -> dict[str, float | int]:
        return {"identifier": self.app_id, "score": round(self.score, 6)}


@dataclass(slots=True)
class SimilarityResult(DTO):
    query: SimilarityQuery
    matches: tuple[SimilarCandidate, ...]
    computed_at: Timestamp = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        object.__setattr__(self, "matches", tuple(self.matches))
