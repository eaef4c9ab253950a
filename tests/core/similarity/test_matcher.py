"""SimilarityMatcher のスコア合成・並び順・境界条件のテスト。"""

from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from game_discovery.core.models import Facet, FacetState, FacetStatus, GamePayload
from game_discovery.core.similarity import (
    SimilarityMatcher,
    SimilarityQuery,
    parse_facet_mode,
)
from game_discovery.shared.exceptions import NotFoundError


@dataclass
class _FakeStore:
    """ファセット別の類似度表だけを持つストア。"""

    known: set[int]
    scores: dict[Facet, dict[int, float]] = field(default_factory=dict)

    def get_game(self, app_id: int):
        return object() if app_id in self.known else None

    def facet_similarities(self, app_id: int, facet: Facet) -> dict[int, float]:
        return dict(self.scores.get(facet, {}))

    def similar_by_facet(self, app_id, facet, *, limit, threshold):
        ranked = [
            (candidate, score)
            for candidate, score in self.scores.get(facet, {}).items()
            if candidate != app_id and score >= threshold
        ]
        ranked.sort(key=lambda item: (-item[1], item[0]))
        return ranked[:limit]


def test_weighted_mode_renormalizes_over_shared_facets() -> None:
    store = _FakeStore(
        known={1},
        scores={Facet.AESTHETIC: {2: 0.8}, Facet.NARRATIVE: {2: 0.4}},
    )
    matcher = SimilarityMatcher(store=store)

    result = matcher.find_similar(SimilarityQuery(app_id=1, threshold=0.0)).unwrap()

    assert len(result.matches) == 1
    assert result.matches[0].app_id == 2
    assert result.matches[0].score == pytest.approx(0.6)
    assert result.matches[0].facet_scores == {"aesthetic": 0.8, "narrative": 0.4}


def test_weighted_mode_ignores_zero_weight_facets() -> None:
    store = _FakeStore(
        known={1},
        scores={Facet.MECHANICS: {2: 0.5}, Facet.DYNAMICS: {2: 1.0, 3: 1.0}},
    )
    matcher = SimilarityMatcher(store=store)

    result = matcher.find_similar(SimilarityQuery(app_id=1, threshold=0.0)).unwrap()

    assert [(m.app_id, m.score) for m in result.matches] == [(2, pytest.approx(0.5))]


def test_single_facet_threshold_limit_and_tie_order() -> None:
    store = _FakeStore(
        known={1},
        scores={Facet.MECHANICS: {1: 1.0, 7: 0.9, 3: 0.9, 5: 0.95, 9: 0.2}},
    )
    matcher = SimilarityMatcher(store=store)

    result = matcher.find_similar(
        SimilarityQuery(app_id=1, facet=Facet.MECHANICS, limit=3, threshold=0.5)
    ).unwrap()

    assert [m.app_id for m in result.matches] == [5, 3, 7]
    assert all(m.score >= 0.5 for m in result.matches)
    assert result.matches[0].to_payload() == {"identifier": 5, "score": 0.95}


def test_source_is_never_returned_in_weighted_mode() -> None:
    store = _FakeStore(known={1}, scores={Facet.AESTHETIC: {1: 1.0, 2: 0.7}})
    matcher = SimilarityMatcher(store=store)

    result = matcher.find_similar(SimilarityQuery(app_id=1, threshold=0.0)).unwrap()

    assert [m.app_id for m in result.matches] == [2]


def test_limit_is_clamped_to_maximum() -> None:
    scores = {candidate: 0.9 for candidate in range(2, 40)}
    store = _FakeStore(known={1}, scores={Facet.AESTHETIC: scores})
    matcher = SimilarityMatcher(store=store, max_limit=5)

    result = matcher.find_similar(
        SimilarityQuery(app_id=1, facet=Facet.AESTHETIC, limit=50, threshold=0.5)
    ).unwrap()

    assert [m.app_id for m in result.matches] == [2, 3, 4, 5, 6]


def test_unknown_source_is_not_found() -> None:
    matcher = SimilarityMatcher(store=_FakeStore(known=set()))

    result = matcher.find_similar(SimilarityQuery(app_id=42))

    assert isinstance(result.error, NotFoundError)


def test_game_without_embeddings_has_no_matches() -> None:
    matcher = SimilarityMatcher(store=_FakeStore(known={1}))

    result = matcher.find_similar(SimilarityQuery(app_id=1)).unwrap()

    assert result.matches == ()


def test_custom_weights_are_validated() -> None:
    with pytest.raises(ValueError):
        SimilarityMatcher(store=_FakeStore(known=set()), facet_weights={"aesthetic": 0.7})
    with pytest.raises(ValueError):
        SimilarityMatcher(
            store=_FakeStore(known=set()), facet_weights={"aesthetic": 1.5, "mechanics": -0.5}
        )

    matcher = SimilarityMatcher(
        store=_FakeStore(known=set()), facet_weights={"mechanics": 0.5, "dynamics": 0.5}
    )
    assert matcher.weights == {Facet.MECHANICS: 0.5, Facet.DYNAMICS: 0.5}


def test_query_validation_and_mode_parsing() -> None:
    with pytest.raises(ValueError):
        SimilarityQuery(app_id=1, limit=0)
    with pytest.raises(ValueError):
        SimilarityQuery(app_id=1, threshold=1.5)

    assert parse_facet_mode("all") is None
    assert parse_facet_mode(None) is None
    assert parse_facet_mode(" Mechanics ") is Facet.MECHANICS
    with pytest.raises(ValueError):
        parse_facet_mode("soundtrack")


def test_matcher_with_stored_embeddings(game_store) -> None:
    for app_id, title in ((1, "Limbo"), (2, "Inside"), (3, "Celeste")):
        game_store.upsert_game(GamePayload(app_id=app_id, title=title))
    matcher = SimilarityMatcher(store=game_store)
    state = FacetState(FacetStatus.COMPUTED, 1, "h")
    game_store.save_facet_result(1, Facet.AESTHETIC, state, [1.0, 0.0, 0.0])
    game_store.save_facet_result(2, Facet.AESTHETIC, state, [1.0, 0.0, 0.0])
    game_store.save_facet_result(3, Facet.AESTHETIC, state, [0.0, 1.0, 0.0])

    result = matcher.find_similar(SimilarityQuery(app_id=1, facet=Facet.AESTHETIC)).unwrap()

    assert [(m.app_id, round(m.score, 3)) for m in result.matches] == [(2, 1.0)]
