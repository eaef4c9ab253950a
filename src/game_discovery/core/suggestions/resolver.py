"""生成候補を appId 付きの Suggestion に解決する。"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from game_discovery.core.models import Suggestion
from game_discovery.infra.db.game_store import GameStore
from game_discovery.infra.generator.parser import SuggestionCandidate
from game_discovery.infra.steam.client import CatalogClientProtocol
from game_discovery.shared.exceptions import BaseAppError
from game_discovery.shared.logging import BoundLogger, get_logger
from game_discovery.shared.types import DTO

from .merge import sanitize_explanation

__all__ = ["ResolutionReport", "SuggestionResolver"]


@dataclass(slots=True)
class ResolutionReport(DTO):
    suggestions: tuple[Suggestion, ...]
    unresolved: tuple[str, ...] = field(default_factory=tuple)


@dataclass(slots=True)
class SuggestionResolver:
    """候補の appId を決める。

    候補に appId があればそれを使い、なければゲームストアのタイトル検索
    (完全一致、次に部分一致)、最後にカタログ検索の先頭結果を採用する。
    解決できない候補とソース自身を指す候補は捨てる。
    """

    store: GameStore
    catalog: CatalogClientProtocol
    max_explanation_length: int = 400
    logger: BoundLogger = field(
        default_factory=lambda: get_logger(__name__, component="suggestion-resolver")
    )

    def resolve(
        self,
        source_app_id: int,
        candidates: Sequence[SuggestionCandidate],
    ) -> ResolutionReport:
        resolved: list[Suggestion] = []
        seen: set[int] = set()
        unresolved: list[str] = []

        for candidate in candidates:
            match = self._resolve_one(candidate)
            if match is None:
                unresolved.append(candidate.title)
                continue
            app_id, title = match
            if app_id == source_app_id or app_id in seen:
                continue
            seen.add(app_id)
            resolved.append(
                Suggestion(
                    app_id=app_id,
                    title=title,
                    explanation=sanitize_explanation(
                        candidate.reason, max_length=self.max_explanation_length
                    ),
                )
            )

        if unresolved:
            self.logger.info(
                "suggestion_candidates_unresolved",
                source_app_id=source_app_id,
                titles=unresolved,
            )
        return ResolutionReport(suggestions=tuple(resolved), unresolved=tuple(unresolved))

    def _resolve_one(self, candidate: SuggestionCandidate) -> tuple[int, str] | None:
        if candidate.app_id is not None:
            return candidate.app_id, candidate.title

        local = self.store.find_app_id_by_title(candidate.title)
        if local is not None:
            return local, candidate.title

        try:
            results = self.catalog.search(candidate.title)
        except BaseAppError as exc:
            self.logger.warning(
                "suggestion_catalog_search_failed",
                title=candidate.title,
                error_type=exc.__class__.__name__,
                message=str(exc),
            )
            return None
        if not results:
            return None
        first = results[0]
        return first.app_id, first.name or candidate.title
