"""GeminiEmbeddingService と埋め込みプロバイダー登録のテスト。"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

import pytest
from google.api_core import exceptions as google_exceptions
from pydantic import SecretStr

from game_discovery.infra.embeddings import (
    get_default_embedding_service,
    register_embedding_service,
)
from game_discovery.infra.embeddings.base import (
    EmbeddingJob,
    EmbeddingServiceError,
    FailedEmbeddingQueue,
)
from game_discovery.infra.embeddings.gemini import (
    GeminiEmbeddingConfig,
    GeminiEmbeddingService,
)
from game_discovery.shared.config import AppSettings, GeminiSettings, StorageSettings
from game_discovery.shared.exceptions import ConfigurationError
from game_discovery.shared.retry import RetryExecutor, RetryPolicy


class _NoopRateLimiter:
    def acquire(self) -> None:
        return


@dataclass
class _FakeEmbeddingClient:
    responses: list[dict[str, object] | Exception]
    calls: list[list[str]] = field(default_factory=list)

    def embed(self, contents: Sequence[str]) -> dict[str, object]:
        self.calls.append(list(contents))
        payload = self.responses.pop(0)
        if isinstance(payload, Exception):
            raise payload
        return payload


def _job(app_id: int, facet: str = "aesthetic") -> EmbeddingJob:
    return EmbeddingJob(app_id=app_id, facet=facet, content=f"{facet} text for {app_id}")


def _service(
    client: _FakeEmbeddingClient,
    **overrides,
) -> GeminiEmbeddingService:
    values = {
        "api_key": "test",
        "model": "text-embedding-004",
        "output_dimensionality": 2,
        "retry_policy": RetryPolicy(max_attempts=2, initial_delay=0.0),
    }
    values.update(overrides)
    config = GeminiEmbeddingConfig(**values)
    return GeminiEmbeddingService(
        config=config,
        embedding_client=client,
        rate_limiter=_NoopRateLimiter(),
        retry_executor=RetryExecutor(config.retry_policy, sleeper=lambda _: None),
        failure_queue=FailedEmbeddingQueue(),
    )


def test_embed_many_keeps_job_order_across_batches() -> None:
    jobs = [_job(10), _job(10, "mechanics"), _job(11)]
    client = _FakeEmbeddingClient(
        responses=[{"embedding": [[1.0, 0.0], [0.0, 1.0]]}, {"embedding": [0.5, 0.5]}],
    )
    service = _service(client, max_batch_size=2)

    vectors = service.embed_many(jobs)

    assert [vector.job_id for vector in vectors] == [
        "10:aesthetic",
        "10:mechanics",
        "11:aesthetic",
    ]
    assert vectors[2].values == (0.5, 0.5)
    assert vectors[0].model == "text-embedding-004"
    assert len(client.calls) == 2
    assert len(service.failure_queue) == 0


def test_transient_error_is_retried() -> None:
    client = _FakeEmbeddingClient(
        responses=[google_exceptions.ServiceUnavailable("busy"), {"embedding": [0.25, 0.75]}]
    )
    service = _service(client)

    vector = service.embed(_job(1))

    assert len(client.calls) == 2
    assert vector.dimension == 2


def test_rejected_request_is_queued_for_backfill() -> None:
    client = _FakeEmbeddingClient(
        responses=[
            google_exceptions.InvalidArgument("bad request"),
            google_exceptions.InvalidArgument("still bad"),
        ]
    )
    service = _service(client)

    for _ in range(2):
        with pytest.raises(EmbeddingServiceError):
            service.embed(_job(7, "narrative"))

    assert len(client.calls) == 2
    assert service.failure_queue.pending_job_ids() == ["7:narrative"]
    record = next(service.failure_queue.drain())
    assert record.attempts == 2
    assert "still bad" in record.error_message


@pytest.mark.parametrize(
    "payload",
    [
        {"embedding": [[0.1, 0.2]]},
        {"embedding": [[0.1, 0.2, 0.3], [0.4, 0.5, 0.6]]},
        {"embedding": [["a", "b"], [0.1, 0.2]]},
        {"embedding": []},
        {},
    ],
)
def test_invalid_payloads_are_rejected(payload) -> None:
    service = _service(_FakeEmbeddingClient(responses=[payload]))

    with pytest.raises(EmbeddingServiceError):
        service.embed_many([_job(1), _job(2)])

    assert len(service.failure_queue) == 2


def test_failure_queue_drops_oldest_entries() -> None:
    queue = FailedEmbeddingQueue(max_size=2)
    for app_id in (1, 2, 3):
        queue.push(_job(app_id), "boom")

    assert queue.pending_job_ids() == ["2:aesthetic", "3:aesthetic"]
    with pytest.raises(ValueError):
        FailedEmbeddingQueue(max_size=0)


def test_config_from_settings_uses_storage_dimension() -> None:
    settings = AppSettings(
        gemini=GeminiSettings(api_key=SecretStr("k"), model="models/custom"),
        storage=StorageSettings(embedding_dimension=256),
    )

    config = GeminiEmbeddingConfig.from_settings(settings)

    assert config.output_dimensionality == 256
    assert config.resolved_model == "models/custom"
    assert GeminiEmbeddingConfig(api_key="k", model="text-embedding-004").resolved_model == (
        "models/text-embedding-004"
    )


def test_default_service_follows_provider_setting() -> None:
    settings = AppSettings(gemini=GeminiSettings(api_key=SecretStr("k")))
    sentinel = object()
    register_embedding_service("Local", lambda _: sentinel)

    local = settings.model_copy(update={"embedding_provider": "local"})
    missing = settings.model_copy(update={"embedding_provider": "missing"})

    assert isinstance(get_default_embedding_service(settings), GeminiEmbeddingService)
    assert get_default_embedding_service(local) is sentinel
    with pytest.raises(ConfigurationError):
        get_default_embedding_service(missing)
