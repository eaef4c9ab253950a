"""RecommendationEngine の端から端までの流れを確認するテスト。"""

from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from game_discovery.core.engine import build_engine
from game_discovery.infra.embeddings.base import EmbeddingJob, EmbeddingVector
from game_discovery.infra.generator import ParseResult, SuggestionCandidate
from game_discovery.infra.steam import SteamAppDetails
from game_discovery.shared.exceptions import BusyError, NotFoundError, TerminalError


class _InlineExecutor(Executor):
    """投入された処理をその場で実行する Executor。"""

    def __init__(self) -> None:
        self.tasks: list[str] = []

    def submit(self, fn, /, *args, **kwargs) -> Future:
        self.tasks.append(getattr(fn, "__name__", repr(fn)))
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:  # noqa: BLE001 - Future に載せて呼び出し元へ返す
            future.set_exception(exc)
        return future


@dataclass
class _FakeCatalog:
    calls: list[int] = field(default_factory=list)

    def fetch_app_details(self, app_id: int) -> SteamAppDetails:
        self.calls.append(app_id)
        return SteamAppDetails(
            app_id=app_id,
            name=f"Game {app_id}",
            app_type="game",
            short_description="A dark pixel platformer about loss.",
            genres=("Indie", "Platformer"),
            categories=("Single-player",),
        )

    def search(self, term: str):
        return ()


@dataclass
class _FakeEmbeddingService:
    provider_name: str = "fake"
    jobs: list[EmbeddingJob] = field(default_factory=list)

    def embed(self, job: EmbeddingJob) -> EmbeddingVector:
        self.jobs.append(job)
        return EmbeddingVector(job_id=job.job_id, values=(1.0, 0.0, 0.0), model="fake")

    def embed_many(self, jobs: Sequence[EmbeddingJob]) -> list[EmbeddingVector]:
        return [self.embed(job) for job in jobs]


@dataclass
class _FakeGenerator:
    result: ParseResult | Exception
    calls: list[str] = field(default_factory=list)

    def generate(self, image_url: str | None, context: str) -> ParseResult:
        self.calls.append(context)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def _suggest(app_id: int, reason: str) -> ParseResult:
    return ParseResult.success(
        [SuggestionCandidate(title=f"Game {app_id}", reason=reason, app_id=app_id)]
    )


@pytest.fixture
def parts():
    return {
        "executor": _InlineExecutor(),
        "catalog": _FakeCatalog(),
        "embedding_service": _FakeEmbeddingService(),
        "generator": _FakeGenerator(_suggest(2, "Same melancholy mood")),
    }


@pytest.fixture
def engine(app_settings, db_manager, parts):
    built = build_engine(
        app_settings,
        manager=db_manager,
        migrate=False,
        sleep_func=lambda _: None,
        **parts,
    )
    yield built
    built.close()


def test_refresh_cascades_and_links_back(engine, parts) -> None:
    payload = engine.refresh(1)

    assert payload == {
        "suggestions": [{"appId": 2, "title": "Game 2", "explanation": "Same melancholy mood"}],
        "newCount": 1,
        "queuedForIngestion": [2],
    }
    assert parts["catalog"].calls == [1, 2]
    assert len(parts["generator"].calls) == 1

    back = engine.suggestions(2)
    assert [item["appId"] for item in back["suggestions"]] == [1]
    assert back["suggestions"][0]["explanation"] == "Game 1 lists Game 2 among its suggestions."
    assert back["updatedAt"] is not None


def test_ingested_games_get_embeddings_and_similarity(engine, parts) -> None:
    engine.refresh(1)

    assert engine.similar(1, "all", threshold=0.0) == [{"identifier": 2, "score": 1.0}]
    assert engine.similar(1, "mechanics") == [{"identifier": 2, "score": 1.0}]
    coverage = engine.coverage()
    assert coverage.total_games == 2
    assert coverage.computed["aesthetic"] == 2
    assert coverage.no_signal["narrative"] == 2


def test_backfill_skips_unchanged_facets(engine, parts) -> None:
    engine.ingest(1)
    engine.ingest(2)
    parts["embedding_service"].jobs.clear()

    totals = engine.backfill_embeddings()

    assert totals == {"computed": 0, "no_signal": 0, "unchanged": 10, "failed": 0}
    assert parts["embedding_service"].jobs == []


def test_second_refresh_does_not_requeue(engine, parts) -> None:
    engine.refresh(1)

    payload = engine.refresh(1)

    assert payload["newCount"] == 0
    assert payload["queuedForIngestion"] == []
    assert parts["catalog"].calls == [1, 2]


def test_generation_failure_surfaces(engine, parts) -> None:
    engine.ingest(1)
    parts["generator"].result = TerminalError("gemini unavailable")

    with pytest.raises(TerminalError):
        engine.refresh(1)
    assert engine.suggestions(1)["suggestions"] == []


def test_unknown_or_invalid_games(engine) -> None:
    with pytest.raises(NotFoundError):
        engine.refresh("not a url")
    with pytest.raises(NotFoundError):
        engine.suggestions(999)
    with pytest.raises(NotFoundError):
        engine.similar(999)


def test_await_suggestions(engine) -> None:
    engine.refresh(1)

    ready = engine.await_suggestions(1)

    assert [item["appId"] for item in ready["suggestions"]] == [2]
    with pytest.raises(BusyError):
        engine.await_suggestions(1, updated_after=datetime.now(UTC) + timedelta(hours=1))


def test_lock_ttl_outlasts_a_slow_catalog_call(engine, app_settings) -> None:
    ttl = engine.pipeline.lock_ttl_seconds

    assert ttl == app_settings.ingest_lock_ttl_seconds()
    assert ttl > app_settings.steam.call_budget_seconds()
