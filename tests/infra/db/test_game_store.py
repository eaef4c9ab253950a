"""SQLAlchemyGameStore の永続化と検索のテスト。"""

from __future__ import annotations

import pytest

from game_discovery.core.models import (
    Facet,
    FacetState,
    FacetStatus,
    GamePayload,
    ReleaseState,
    Suggestion,
)
from game_discovery.infra.db import GameStoreError, SQLAlchemyGameStore, cosine_similarity
from game_discovery.infra.db.game_store import knn_window_settled


def _payload(app_id: int, title: str, **overrides) -> GamePayload:
    values = {
        "app_id": app_id,
        "title": title,
        "short_description": f"{title} description",
        "genres": ("Indie", "Puzzle"),
        "media": ("https://cdn.example.com/a.jpg",),
    }
    values.update(overrides)
    return GamePayload(**values)


def _state(status: FacetStatus = FacetStatus.COMPUTED) -> FacetState:
    return FacetState(status=status, rule_version=1, text_hash="h", model="m", dimension=3)


def _embed(store, app_id: int, facet: Facet, vector) -> None:
    store.save_facet_result(app_id, facet, _state(), vector)


def test_upsert_inserts_then_updates(game_store) -> None:
    created = game_store.upsert_game(_payload(10, "Inside"))
    updated = game_store.upsert_game(
        _payload(10, "Inside", short_description="new", release_state=ReleaseState.UPCOMING)
    )

    assert created.created_at is not None
    assert updated.created_at == created.created_at
    assert updated.short_description == "new"
    assert updated.release_state is ReleaseState.UPCOMING
    assert updated.genres == ("Indie", "Puzzle")
    assert game_store.list_app_ids() == [10]


def test_upsert_keeps_suggestions_and_embeddings(game_store) -> None:
    game_store.upsert_game(_payload(1, "Limbo"))
    game_store.upsert_game(_payload(2, "Inside"))
    _embed(game_store, 1, Facet.AESTHETIC, [1.0, 0.0, 0.0])
    snapshot = game_store.get_suggestions(1)
    game_store.compare_and_swap_suggestions(
        1, snapshot.version, [Suggestion(app_id=2, title="Inside", explanation="Same studio")]
    )

    record = game_store.upsert_game(_payload(1, "Limbo", short_description="refreshed"))

    assert record.embeddings[Facet.AESTHETIC] == (1.0, 0.0, 0.0)
    assert record.facet_states[Facet.AESTHETIC].status is FacetStatus.COMPUTED
    assert [item.app_id for item in record.suggestions] == [2]


def test_lookup_helpers(game_store) -> None:
    game_store.upsert_game(_payload(1, "Hollow Knight"))
    game_store.upsert_game(_payload(2, "Hollow Knight: Silksong"))
    game_store.upsert_game(_payload(3, "100% Orange Juice"))

    assert game_store.get_game(99) is None
    assert set(game_store.get_games([1, 3, 99])) == {1, 3}
    assert game_store.existing_app_ids([1, 2, 99]) == {1, 2}
    assert game_store.find_app_id_by_title("hollow  knight") == 1
    assert game_store.find_app_id_by_title("Silksong") == 2
    assert game_store.find_app_id_by_title("100%") == 3
    assert game_store.find_app_id_by_title("Celeste") is None
    assert game_store.find_app_id_by_title("  ") is None


def test_save_facet_result_checks_dimension_and_existence(game_store) -> None:
    game_store.upsert_game(_payload(1, "Limbo"))

    with pytest.raises(GameStoreError):
        _embed(game_store, 1, Facet.MECHANICS, [1.0, 0.0])
    with pytest.raises(GameStoreError):
        _embed(game_store, 404, Facet.MECHANICS, [1.0, 0.0, 0.0])


def test_no_signal_state_is_recorded_without_vector(game_store) -> None:
    game_store.upsert_game(_payload(1, "Limbo"))

    game_store.save_facet_result(1, Facet.NARRATIVE, _state(FacetStatus.NO_SIGNAL), None)
    record = game_store.get_game(1)
    coverage = game_store.embedding_coverage()

    assert Facet.NARRATIVE not in record.embeddings
    assert record.facet_states[Facet.NARRATIVE].status is FacetStatus.NO_SIGNAL
    assert coverage.total_games == 1
    assert coverage.no_signal["narrative"] == 1
    assert coverage.missing(Facet.NARRATIVE) == 0
    assert coverage.missing(Facet.AESTHETIC) == 1


def test_similar_by_facet_orders_filters_and_excludes_source(game_store) -> None:
    for app_id in (1, 2, 3, 4, 5):
        game_store.upsert_game(_payload(app_id, f"Game {app_id}"))
    _embed(game_store, 1, Facet.AESTHETIC, [1.0, 0.0, 0.0])
    _embed(game_store, 2, Facet.AESTHETIC, [0.0, 1.0, 0.0])
    _embed(game_store, 3, Facet.AESTHETIC, [1.0, 1.0, 0.0])
    _embed(game_store, 4, Facet.AESTHETIC, [1.0, 1.0, 0.0])
    _embed(game_store, 5, Facet.AESTHETIC, [0.0, 0.0, 0.0])

    ranked = game_store.similar_by_facet(1, Facet.AESTHETIC, limit=5, threshold=0.5)
    limited = game_store.similar_by_facet(1, Facet.AESTHETIC, limit=1, threshold=-1.0)

    assert [app_id for app_id, _ in ranked] == [3, 4]
    assert ranked[0][1] == pytest.approx(0.7071, abs=1e-3)
    assert [app_id for app_id, _ in limited] == [3]
    assert game_store.similar_by_facet(2, Facet.MECHANICS, limit=5, threshold=0.0) == []
    assert game_store.vec_index_facets == frozenset()


class _TieShufflingVecStore(SQLAlchemyGameStore):
    """同距離の行を appId の降順で返す近傍索引を模したストア。"""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.requested_k: list[int] = []

    def _query_vec_index(self, facet, source, k):
        self.requested_k.append(k)
        scored = self._scan_similarities(-1, facet, source)
        rows = sorted(
            ((app_id, 1.0 - score) for app_id, score in scored.items()),
            key=lambda row: (row[1], -row[0]),
        )
        return rows[:k]


def test_vec_index_search_keeps_app_id_order_for_boundary_ties(db_manager) -> None:
    store = _TieShufflingVecStore(db_manager, dimension=3, enable_vec_index=False)
    for app_id in range(1, 8):
        store.upsert_game(_payload(app_id, f"Game {app_id}"))
    _embed(store, 1, Facet.AESTHETIC, [1.0, 0.0, 0.0])
    for app_id in range(2, 7):
        _embed(store, app_id, Facet.AESTHETIC, [1.0, 1.0, 0.0])
    _embed(store, 7, Facet.AESTHETIC, [0.0, 1.0, 0.0])
    store._vec_ready.add(Facet.AESTHETIC)

    ranked = store.similar_by_facet(1, Facet.AESTHETIC, limit=2, threshold=0.0)

    assert [app_id for app_id, _ in ranked] == [2, 3]
    assert store.requested_k == [4, 8]


@pytest.mark.parametrize(
    ("distances", "keep", "k", "settled"),
    [
        ([0.0, 0.1, 0.2, 0.3], 3, 4, True),
        ([0.0, 0.3, 0.3, 0.3], 3, 4, False),
        ([0.0, 0.3, 0.3], 3, 4, True),
        ([0.3, 0.3, 0.3, 0.3, 0.4], 2, 5, True),
    ],
)
def test_knn_window_settled(distances, keep, k, settled) -> None:
    assert knn_window_settled(distances, keep=keep, k=k) is settled


def test_facet_similarities_returns_all_scores(game_store) -> None:
    for app_id in (1, 2, 3):
        game_store.upsert_game(_payload(app_id, f"Game {app_id}"))
    _embed(game_store, 1, Facet.MECHANICS, [1.0, 0.0, 0.0])
    _embed(game_store, 2, Facet.MECHANICS, [-1.0, 0.0, 0.0])

    scores = game_store.facet_similarities(1, Facet.MECHANICS)

    assert scores == pytest.approx({2: -1.0})


def test_compare_and_swap_suggestions(game_store) -> None:
    game_store.upsert_game(_payload(1, "Limbo"))
    entry = Suggestion(app_id=2, title="Inside", explanation="Same studio")

    assert game_store.compare_and_swap_suggestions(1, 0, [entry]) is True
    assert game_store.compare_and_swap_suggestions(1, 0, []) is False

    snapshot = game_store.get_suggestions(1)
    assert snapshot.version == 1
    assert snapshot.suggestions == (entry,)
    assert snapshot.lists(2)
    assert not snapshot.lists(3)
    assert snapshot.updated_at is not None
    assert snapshot.updated_at.tzinfo is not None
    assert game_store.get_suggestions(404) is None


def test_clear_suggestions_bumps_version(game_store) -> None:
    game_store.upsert_game(_payload(1, "Limbo"))
    game_store.compare_and_swap_suggestions(
        1, 0, [Suggestion(app_id=2, title="Inside", explanation="x")]
    )

    game_store.clear_suggestions(1)
    snapshot = game_store.get_suggestions(1)

    assert snapshot.suggestions == ()
    assert snapshot.version == 2


def test_cosine_similarity_handles_zero_vectors() -> None:
    assert cosine_similarity([1.0, 0.0], [0.0, 0.0]) is None
    assert cosine_similarity([1.0, 0.0], [2.0, 0.0]) == pytest.approx(1.0)
