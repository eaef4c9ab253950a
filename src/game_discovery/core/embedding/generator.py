"""ファセット埋め込みの生成と保存。"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum

from game_discovery.core.models import Facet, FacetState, FacetStatus, GameRecord
from game_discovery.infra.db.game_store import GameStore
from game_discovery.infra.embeddings.base import EmbeddingJob, EmbeddingServiceProtocol
from game_discovery.shared.exceptions import BaseAppError, DomainError, Result
from game_discovery.shared.logging import BoundLogger, get_logger
from game_discovery.shared.types import DTO, utc_now

from .facets import FACET_RULES, FacetRule, facet_text_hash


class FacetEmbeddingError(DomainError):
    """ファセット埋め込みの生成・保存に失敗した。既存のベクトルは変更されない。"""

    default_message = "ファセット埋め込みの生成に失敗しました"

    def __init__(
        self,
        message: str | None = None,
        *,
        app_id: int | None = None,
        facet: Facet | None = None,
        cause: BaseAppError | None = None,
    ) -> None:
        super().__init__(message)
        self.app_id = app_id
        self.facet = facet
        self.cause = cause


class FacetOutcomeStatus(StrEnum):
    COMPUTED = "computed"
    NO_SIGNAL = "no_signal"
    UNCHANGED = "unchanged"


@dataclass(slots=True)
class FacetEmbeddingOutcome(DTO):
    app_id: int
    facet: Facet
    status: FacetOutcomeStatus
    dimension: int | None = None


@dataclass(slots=True)
class FacetEmbeddingGenerator:
    """ゲームのファセットごとにテキストを抽出し、埋め込みを計算して保存する。

    抽出テキストのハッシュとルールのバージョンが保存済みの状態と一致すれば再計算しない。
    プロバイダ失敗時は何も書き込まずにエラーを返す。
    """

    embedding_service: EmbeddingServiceProtocol
    store: GameStore
    rules: Mapping[Facet, FacetRule] = field(default_factory=lambda: dict(FACET_RULES))
    logger: BoundLogger = field(
        default_factory=lambda: get_logger(__name__, component="facet-embedding")
    )

    def embed(
        self,
        game: GameRecord,
        facet: Facet,
        *,
        force: bool = False,
    ) -> Result[FacetEmbeddingOutcome, FacetEmbeddingError]:
        rule = self.rules[facet]
        text = rule.extract(game)
        text_hash = facet_text_hash(text)

        if not force and self._is_current(game, facet, rule, text_hash):
            return Result.ok(
                FacetEmbeddingOutcome(
                    app_id=game.app_id,
                    facet=facet,
                    status=FacetOutcomeStatus.UNCHANGED,
                    dimension=len(game.embeddings.get(facet, ())) or None,
                )
            )

        if not text:
            state = FacetState(
                status=FacetStatus.NO_SIGNAL,
                rule_version=rule.version,
                text_hash=text_hash,
                computed_at=utc_now().isoformat(),
            )
            try:
                self.store.save_facet_result(game.app_id, facet, state, None)
            except BaseAppError as exc:
                return self._fail("facet_state_save_failed", game, facet, exc)
            self.logger.info("facet_no_signal", app_id=game.app_id, facet=facet.value)
            return Result.ok(
                FacetEmbeddingOutcome(
                    app_id=game.app_id, facet=facet, status=FacetOutcomeStatus.NO_SIGNAL
                )
            )

        job = EmbeddingJob(
            app_id=game.app_id, facet=facet.value, content=text, rule_version=rule.version
        )
        try:
            vector = self.embedding_service.embed(job)
        except BaseAppError as exc:
            return self._fail("facet_embedding_failed", game, facet, exc)

        state = FacetState(
            status=FacetStatus.COMPUTED,
            rule_version=rule.version,
            text_hash=text_hash,
            model=vector.model,
            dimension=vector.dimension,
            computed_at=vector.created_at.isoformat(),
        )
        try:
            self.store.save_facet_result(game.app_id, facet, state, vector.values)
        except BaseAppError as exc:
            return self._fail("facet_embedding_save_failed", game, facet, exc)

        self.logger.info(
            "facet_embedding_computed",
            app_id=game.app_id,
            facet=facet.value,
            dimension=vector.dimension,
            model=vector.model,
        )
        return Result.ok(
            FacetEmbeddingOutcome(
                app_id=game.app_id,
                facet=facet,
                status=FacetOutcomeStatus.COMPUTED,
                dimension=vector.dimension,
            )
        )

    def embed_all(
        self,
        game: GameRecord,
        *,
        facets: Iterable[Facet] | None = None,
        force: bool = False,
    ) -> dict[Facet, Result[FacetEmbeddingOutcome, FacetEmbeddingError]]:
        """全ファセット (または指定分) を順に処理する。1 つの失敗で他を止めない。"""

        targets = list(facets) if facets is not None else list(self.rules)
        return {facet: self.embed(game, facet, force=force) for facet in targets}

    def _is_current(
        self,
        game: GameRecord,
        facet: Facet,
        rule: FacetRule,
        text_hash: str,
    ) -> bool:
        state = game.facet_states.get(facet)
        if state is None or state.rule_version != rule.version or state.text_hash != text_hash:
            return False
        if state.status is FacetStatus.NO_SIGNAL:
            return True
        return facet in game.embeddings

    def _fail(
        self,
        event: str,
        game: GameRecord,
        facet: Facet,
        error: BaseAppError,
    ) -> Result[FacetEmbeddingOutcome, FacetEmbeddingError]:
        self.logger.error(
            event,
            app_id=game.app_id,
            facet=facet.value,
            error_type=error.__class__.__name__,
            message=str(error),
        )
        return Result.err(
            FacetEmbeddingError(str(error), app_id=game.app_id, facet=facet, cause=error)
        )


__all__ = [
    "FacetEmbeddingError",
    "FacetEmbeddingGenerator",
    "FacetEmbeddingOutcome",
    "FacetOutcomeStatus",
]
