"""単一ファセットおよび重み付き全ファセットの類似ゲーム検索。"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field

from game_discovery.core.models import Facet
from game_discovery.infra.db.game_store import GameStore
from game_discovery.shared.config import BALANCED_FACET_WEIGHTS
from game_discovery.shared.exceptions import BaseAppError, DomainError, NotFoundError, Result
from game_discovery.shared.logging import BoundLogger, get_logger

from .dto import SimilarCandidate, SimilarityQuery, SimilarityResult

WEIGHT_TOLERANCE = 1e-6


class SimilarityMatcherError(DomainError):
    """類似度検索の失敗。"""

    default_message = "類似ゲームの検索に失敗しました"


def _normalize_weights(weights: Mapping[str | Facet, float]) -> dict[Facet, float]:
    normalized: dict[Facet, float] = {}
    for key, weight in weights.items():
        facet = Facet.parse(key)
        if weight < 0:
            msg = f"facet weight must be non-negative: {facet.value}={weight}"
            raise ValueError(msg)
        normalized[facet] = float(weight)
    total = sum(normalized.values())
    if not math.isclose(total, 1.0, abs_tol=WEIGHT_TOLERANCE):
        msg = f"facet weights must sum to 1 (got {total})"
        raise ValueError(msg)
    return normalized


@dataclass(slots=True)
class SimilarityMatcher:
    """ゲームストアの近傍検索を用いて類似ゲームを返す。

    全ファセットモードでは、両方のゲームが持つファセットだけで重みを正規化した
    加重平均 ``sum(w * s) / sum(w)`` を用いる。欠けたファセットはその組では重み 0 として扱う。
    並び順はスコア降順、同点は appId 昇順。
    """

    store: GameStore
    facet_weights: Mapping[str | Facet, float] = field(
        default_factory=lambda: dict(BALANCED_FACET_WEIGHTS)
    )
    max_limit: int = 24
    logger: BoundLogger = field(
        default_factory=lambda: get_logger(__name__, component="similarity-matcher")
    )
    _weights: dict[Facet, float] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._weights = _normalize_weights(self.facet_weights)

    @property
    def weights(self) -> dict[Facet, float]:
        return dict(self._weights)

    def find_similar(self, query: SimilarityQuery) -> Result[SimilarityResult, DomainError]:
        if self.store.get_game(query.app_id) is None:
            return Result.err(NotFoundError(f"Game {query.app_id} has not been ingested"))

        limit = min(query.limit, self.max_limit)
        try:
            if query.facet is None:
                matches = self._weighted(query.app_id, limit=limit, threshold=query.threshold)
            else:
                matches = self._single(
                    query.app_id, query.facet, limit=limit, threshold=query.threshold
                )
        except BaseAppError as exc:
            self.logger.error(
                "similarity_lookup_failed",
                app_id=query.app_id,
                mode=query.mode,
                error_type=exc.__class__.__name__,
                message=str(exc),
            )
            return Result.err(SimilarityMatcherError(str(exc)))

        self.logger.info(
            "similarity_computed",
            app_id=query.app_id,
            mode=query.mode,
            limit=limit,
            threshold=query.threshold,
            matches=len(matches),
        )
        return Result.ok(SimilarityResult(query=query, matches=tuple(matches)))

    def _single(
        self,
        app_id: int,
        facet: Facet,
        *,
        limit: int,
        threshold: float,
    ) -> list[SimilarCandidate]:
        ranked = self.store.similar_by_facet(app_id, facet, limit=limit, threshold=threshold)
        return [
            SimilarCandidate(app_id=candidate, score=score, facet_scores={facet.value: score})
            for candidate, score in ranked
        ]

    def _weighted(self, app_id: int, *, limit: int, threshold: float) -> list[SimilarCandidate]:
        weighted_sum: dict[int, float] = {}
        weight_total: dict[int, float] = {}
        per_facet: dict[int, dict[str, float]] = {}

        for facet in Facet:
            weight = self._weights.get(facet, 0.0)
            if weight <= 0:
                continue
            for candidate, similarity in self.store.facet_similarities(app_id, facet).items():
                if candidate == app_id:
                    continue
                weighted_sum[candidate] = weighted_sum.get(candidate, 0.0) + weight * similarity
                weight_total[candidate] = weight_total.get(candidate, 0.0) + weight
                per_facet.setdefault(candidate, {})[facet.value] = similarity

        matches = [
            SimilarCandidate(
                app_id=candidate,
                score=weighted_sum[candidate] / total,
                facet_scores=per_facet[candidate],
            )
            for candidate, total in weight_total.items()
            if total > 0
        ]
        matches = [match for match in matches if match.score >= threshold]
        matches.sort(key=lambda match: (-match.score, match.app_id))
        return matches[:limit]


__all__ = ["SimilarityMatcher", "SimilarityMatcherError"]
