"""SuggestionService のマージ・冪等性・競合制御・双方向リンクのテスト。"""

from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from game_discovery.core.models import GamePayload, Suggestion
from game_discovery.core.suggestions import SuggestionResolver, SuggestionService
from game_discovery.core.suggestions.service import reciprocal_explanation
from game_discovery.infra.generator import ParseResult, ParseStatus, SuggestionCandidate
from game_discovery.shared.exceptions import BusyError, NotFoundError, TerminalError


@dataclass
class _FakeGenerator:
    results: list[ParseResult | Exception]
    calls: list[tuple[str | None, str]] = field(default_factory=list)

    def generate(self, image_url: str | None, context: str) -> ParseResult:
        self.calls.append((image_url, context))
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


class _NoSearchCatalog:
    def fetch_app_details(self, app_id: int):  # pragma: no cover - 使わない
        raise AssertionError("not expected")

    def search(self, term: str):
        return ()


class _RacingStore:
    """CAS の直前に別の書き込みを割り込ませるストアのラッパー。"""

    def __init__(self, inner, *, races: int) -> None:
        self._inner = inner
        self.races = races

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def compare_and_swap_suggestions(self, app_id, expected_version, suggestions):
        if self.races > 0:
            self.races -= 1
            snapshot = self._inner.get_suggestions(app_id)
            racer = Suggestion(app_id=900 + self.races, title="Racer", explanation="concurrent")
            self._inner.compare_and_swap_suggestions(
                app_id, snapshot.version, (*snapshot.suggestions, racer)
            )
        return self._inner.compare_and_swap_suggestions(app_id, expected_version, suggestions)


def _candidates(*entries: tuple[int, str]) -> ParseResult:
    return ParseResult.success(
        [
            SuggestionCandidate(title=f"Game {app_id}", reason=reason, app_id=app_id)
            for app_id, reason in entries
        ]
    )


def _service(store, generator) -> SuggestionService:
    resolver = SuggestionResolver(store=store, catalog=_NoSearchCatalog())
    return SuggestionService(store=store, generator=generator, resolver=resolver)


@pytest.fixture
def source(game_store):
    return game_store.upsert_game(
        GamePayload(app_id=1, title="Limbo", header_image="https://cdn.example.com/1.jpg")
    )


def test_refresh_stores_suggestions_and_reports_dangling(game_store, source) -> None:
    game_store.upsert_game(GamePayload(app_id=2, title="Inside"))
    generator = _FakeGenerator([_candidates((2, "Same studio"), (3, "Similar mood"))])

    outcome = _service(game_store, generator).refresh(1).unwrap()

    assert [s.app_id for s in outcome.suggestions] == [2, 3]
    assert outcome.new_count == 2
    assert outcome.queued_for_ingestion == (3,)
    assert generator.calls[0][0] == "https://cdn.example.com/1.jpg"
    assert generator.calls[0][1].startswith("Title: Limbo")
    assert outcome.to_payload()["queuedForIngestion"] == [3]
    assert game_store.get_suggestions(1).version == 1


def test_refresh_links_existing_targets_back(game_store, source) -> None:
    game_store.upsert_game(GamePayload(app_id=2, title="Inside"))
    generator = _FakeGenerator([_candidates((2, "Same studio"))])

    _service(game_store, generator).refresh(1)

    back = game_store.get_suggestions(2).suggestions
    assert back == (
        Suggestion(
            app_id=1,
            title="Limbo",
            explanation=reciprocal_explanation("Limbo", "Inside"),
        ),
    )
    assert "Same studio" not in back[0].explanation


def test_refresh_is_idempotent(game_store, source) -> None:
    generator = _FakeGenerator([_candidates((5, "a"), (6, "b"))])
    service = _service(game_store, generator)

    first = service.refresh(1).unwrap()
    second = service.refresh(1).unwrap()

    assert second.suggestions == first.suggestions
    assert second.new_count == 0
    assert game_store.get_suggestions(1).version == 1


def test_refresh_merges_with_existing_entries(game_store, source) -> None:
    generator = _FakeGenerator(
        [_candidates((2, "x"), (3, "y"), (4, "z")), _candidates((3, "y2"), (7, "w"))]
    )
    service = _service(game_store, generator)
    service.refresh(1)

    outcome = service.refresh(1).unwrap()

    assert [s.app_id for s in outcome.suggestions] == [2, 3, 4, 7]
    assert outcome.suggestions[1].explanation == "y2"
    assert outcome.new_count == 1


def test_malformed_generation_keeps_existing_list(game_store, source) -> None:
    generator = _FakeGenerator(
        [_candidates((2, "x")), ParseResult.malformed("no suggestion list found")]
    )
    service = _service(game_store, generator)
    service.refresh(1)

    outcome = service.refresh(1).unwrap()

    assert outcome.new_count == 0
    assert outcome.parse_status is ParseStatus.MALFORMED
    assert [s.app_id for s in outcome.suggestions] == [2]


def test_generation_failure_is_returned(game_store, source) -> None:
    generator = _FakeGenerator([TerminalError("gemini unavailable")])

    result = _service(game_store, generator).refresh(1)

    assert isinstance(result.error, TerminalError)
    assert game_store.get_suggestions(1).suggestions == ()


def test_refresh_unknown_game(game_store) -> None:
    result = _service(game_store, _FakeGenerator([ParseResult.empty()])).refresh(404)

    assert isinstance(result.error, NotFoundError)


def test_force_replaces_list_with_fresh_suggestions(game_store, source) -> None:
    generator = _FakeGenerator([_candidates((2, "x"), (3, "y")), _candidates((4, "z"))])
    service = _service(game_store, generator)
    service.refresh(1)

    outcome = service.refresh(1, force=True).unwrap()

    assert [s.app_id for s in outcome.suggestions] == [4]
    assert outcome.new_count == 1
    assert [s.app_id for s in game_store.get_suggestions(1).suggestions] == [4]
    assert game_store.get_suggestions(1).version == 2


@pytest.mark.parametrize(
    "second",
    [
        TerminalError("gemini unavailable"),
        ParseResult.malformed("no suggestion list found"),
        ParseResult.empty(),
        # 解決できない候補だけが返った場合も置き換えない
        ParseResult.success([SuggestionCandidate(title="Unknown Game", reason="?")]),
    ],
    ids=["terminal-error", "malformed", "empty", "unresolvable"],
)
def test_force_keeps_cached_list_when_generation_fails(game_store, source, second) -> None:
    generator = _FakeGenerator([_candidates((2, "x"), (3, "y")), second])
    service = _service(game_store, generator)
    service.refresh(1)

    result = service.refresh(1, force=True)

    stored = game_store.get_suggestions(1)
    assert [s.app_id for s in stored.suggestions] == [2, 3]
    assert stored.version == 1
    if isinstance(second, Exception):
        assert result.error is second
    else:
        assert [s.app_id for s in result.unwrap().suggestions] == [2, 3]
        assert result.unwrap().new_count == 0



def test_cas_conflict_is_retried_once(game_store, source) -> None:
    racing = _RacingStore(game_store, races=1)
    generator = _FakeGenerator([_candidates((2, "x"))])

    outcome = _service(racing, generator).refresh(1).unwrap()

    assert [s.app_id for s in outcome.suggestions] == [900, 2]
    assert game_store.get_suggestions(1).version == 2


def test_repeated_conflicts_become_busy(game_store, source) -> None:
    racing = _RacingStore(game_store, races=2)
    generator = _FakeGenerator([_candidates((2, "x"))])

    result = _service(racing, generator).refresh(1)

    assert isinstance(result.error, BusyError)
    assert [s.app_id for s in game_store.get_suggestions(1).suggestions] == [901, 900]


def test_link_reciprocal_adds_missing_link_once(game_store, source) -> None:
    game_store.upsert_game(GamePayload(app_id=2, title="Inside"))
    service = _service(game_store, _FakeGenerator([ParseResult.empty()]))

    assert service.link_reciprocal(2, 1) is True
    assert service.link_reciprocal(2, 1) is False
    assert service.link_reciprocal(404, 1) is False
    assert service.link_reciprocal(2, 404) is False
    assert [s.app_id for s in game_store.get_suggestions(2).suggestions] == [1]


def test_get_and_clear(game_store, source) -> None:
    service = _service(game_store, _FakeGenerator([_candidates((2, "x"))]))
    service.refresh(1)

    service.clear(1)

    assert service.get(1).unwrap().suggestions == ()
    assert isinstance(service.get(404).error, NotFoundError)
