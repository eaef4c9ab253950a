"""候補キャッシュ: 生成・マージ・双方向リンク・永続化。"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from game_discovery.core.models import GameRecord, Suggestion, SuggestionSnapshot
from game_discovery.infra.db.game_store import GameStore
from game_discovery.infra.generator.gemini import SuggestionGeneratorProtocol
from game_discovery.infra.generator.parser import ParseStatus
from game_discovery.shared.exceptions import BaseAppError, BusyError, NotFoundError, Result
from game_discovery.shared.logging import BoundLogger, get_logger
from game_discovery.shared.types import DTO

from .context import build_suggestion_context
from .merge import MergeResult, merge_suggestions
from .resolver import SuggestionResolver

__all__ = ["RefreshOutcome", "SuggestionService", "reciprocal_explanation"]

CAS_ATTEMPTS = 2


@dataclass(slots=True)
class RefreshOutcome(DTO):
    """`refresh` の結果。queued_for_ingestion は未取り込みの対象 appId。"""

    app_id: int
    suggestions: tuple[Suggestion, ...]
    new_count: int
    queued_for_ingestion: tuple[int, ...]
    parse_status: ParseStatus = ParseStatus.SUCCESS
    updated_at: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "suggestions": [suggestion.to_payload() for suggestion in self.suggestions],
            "newCount": self.new_count,
            "queuedForIngestion": list(self.queued_for_ingestion),
        }


@dataclass(slots=True)
class SuggestionService:
    """ゲームごとの候補リストを生成し、既存のリストとマージして保存する。

    書き込みは版数による compare-and-swap で行い、競合時は読み直して 1 度だけ再試行する。
    生成結果が解釈できない場合は新規 0 件として扱い、既存のリストは消さない。
    `force` でも同じで、置き換えは検証済みの候補が 1 件以上得られたときだけ行う。
    """

    store: GameStore
    generator: SuggestionGeneratorProtocol
    resolver: SuggestionResolver
    logger: BoundLogger = field(
        default_factory=lambda: get_logger(__name__, component="suggestion-service")
    )

    def refresh(self, app_id: int, *, force: bool = False) -> Result[RefreshOutcome, BaseAppError]:
        game = self.store.get_game(app_id)
        if game is None:
            return Result.err(NotFoundError(f"Game {app_id} has not been ingested"))

        self.logger.info("suggestions_refresh_started", app_id=app_id, force=force)
        try:
            parsed = self.generator.generate(game.primary_image, build_suggestion_context(game))
        except BaseAppError as exc:
            self.logger.error(
                "suggestions_generation_failed",
                app_id=app_id,
                error_type=exc.__class__.__name__,
                message=str(exc),
            )
            return Result.err(exc)

        if parsed.is_success:
            incoming = self.resolver.resolve(app_id, parsed.candidates).suggestions
        else:
            self.logger.warning(
                "suggestions_generation_unusable",
                app_id=app_id,
                status=parsed.status.value,
                detail=parsed.detail,
            )
            incoming = ()

        # 強制再生成でも、検証済みの候補が得られた場合だけ既存のリストを置き換える
        replace = force and bool(incoming)
        try:
            merge, snapshot = self._merge_and_store(app_id, incoming, replace=replace)
        except BaseAppError as exc:
            self.logger.error(
                "suggestions_merge_failed",
                app_id=app_id,
                error_type=exc.__class__.__name__,
                message=str(exc),
            )
            return Result.err(exc)

        targets = [suggestion.app_id for suggestion in merge.suggestions]
        existing = self.store.existing_app_ids(targets)
        for suggestion in merge.added:
            if suggestion.app_id in existing:
                self._link_back(suggestion.app_id, game)

        dangling = tuple(target for target in targets if target not in existing)
        self.logger.info(
            "suggestions_merged",
            app_id=app_id,
            total=len(merge.suggestions),
            new_count=merge.new_count,
            dangling=len(dangling),
        )
        return Result.ok(
            RefreshOutcome(
                app_id=app_id,
                suggestions=merge.suggestions,
                new_count=merge.new_count,
                queued_for_ingestion=dangling,
                parse_status=parsed.status,
                updated_at=snapshot.updated_at,
            )
        )

    def get(self, app_id: int) -> Result[SuggestionSnapshot, NotFoundError]:
        snapshot = self.store.get_suggestions(app_id)
        if snapshot is None:
            return Result.err(NotFoundError(f"Game {app_id} has not been ingested"))
        return Result.ok(snapshot)

    def clear(self, app_id: int) -> None:
        """明示的な強制クリア。候補が削除されるのはこの操作だけ。"""

        self.store.clear_suggestions(app_id)

    def link_reciprocal(self, target_app_id: int, source_app_id: int) -> bool:
        """対象ゲームから元のゲームへの逆向きリンクを、まだ無ければ追加する。"""

        source = self.store.get_game(source_app_id)
        if source is None:
            return False
        return self._link_back(target_app_id, source)

    def _link_back(self, target_app_id: int, source: GameRecord) -> bool:
        target = self.store.get_game(target_app_id)
        if target is None or target_app_id == source.app_id:
            return False
        link = Suggestion(
            app_id=source.app_id,
            title=source.title,
            explanation=reciprocal_explanation(source.title, target.title),
        )
        for attempt in range(1, CAS_ATTEMPTS + 1):
            snapshot = self.store.get_suggestions(target_app_id)
            if snapshot is None or snapshot.lists(source.app_id):
                return False
            if self.store.compare_and_swap_suggestions(
                target_app_id, snapshot.version, (*snapshot.suggestions, link)
            ):
                self.logger.info(
                    "suggestion_reciprocal_linked",
                    app_id=target_app_id,
                    source_app_id=source.app_id,
                )
                return True
            self.logger.info("suggestion_reciprocal_retry", app_id=target_app_id, attempt=attempt)
        self.logger.warning(
            "suggestion_reciprocal_conflict", app_id=target_app_id, source_app_id=source.app_id
        )
        return False

    def _merge_and_store(
        self,
        app_id: int,
        incoming: Sequence[Suggestion],
        *,
        replace: bool = False,
    ) -> tuple[MergeResult, SuggestionSnapshot]:
        """現在の版数に対してマージ結果を書き込む。

        `replace` の場合は空のリストに対してマージし、既存の候補を丸ごと置き換える。
        """

        for attempt in range(1, CAS_ATTEMPTS + 1):
            snapshot = self.store.get_suggestions(app_id)
            if snapshot is None:
                raise NotFoundError(f"Game {app_id} has not been ingested")
            base = () if replace else snapshot.suggestions
            merge = merge_suggestions(base, incoming)
            if merge.suggestions == snapshot.suggestions:
                return merge, snapshot
            if self.store.compare_and_swap_suggestions(app_id, snapshot.version, merge.suggestions):
                written = self.store.get_suggestions(app_id)
                return merge, written if written is not None else snapshot
            self.logger.info("suggestions_cas_retry", app_id=app_id, attempt=attempt)
        raise BusyError(f"Suggestions of {app_id} changed concurrently")


def reciprocal_explanation(source_title: str, target_title: str) -> str:
    """逆向きリンクの説明文。元の説明は対象ゲームについての文なので流用しない。"""

    return f"{source_title} lists {target_title} among its suggestions."
