"""ゲームストア: 取り込み済みゲーム・ファセット埋め込み・候補リストの永続化。"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from array import array
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from game_discovery.core.models import (
    Facet,
    FacetState,
    FacetStatus,
    GamePayload,
    GameRecord,
    ReleaseState,
    Suggestion,
    SuggestionSnapshot,
)
from game_discovery.shared.exceptions import BaseAppError
from game_discovery.shared.logging import BoundLogger, get_logger
from game_discovery.shared.types import DTO, as_utc, utc_now

from .models import FACET_COLUMNS, Game
from .session import DatabaseSessionManager

__all__ = [
    "EmbeddingCoverage",
    "GameStore",
    "GameStoreError",
    "SQLAlchemyGameStore",
    "cosine_similarity",
    "knn_window_settled",
]


class GameStoreError(BaseAppError):
    """ゲームストア操作の失敗。"""

    default_message = "Game store operation failed"


@dataclass(slots=True)
class EmbeddingCoverage(DTO):
    """ファセットごとの埋め込み充足状況。"""

    total_games: int
    computed: dict[str, int] = field(default_factory=dict)
    no_signal: dict[str, int] = field(default_factory=dict)

    def missing(self, facet: Facet) -> int:
        return self.total_games - self.computed.get(facet.value, 0) - self.no_signal.get(
            facet.value, 0
        )


class GameStore(ABC):
    """ゲームストアの抽象化。"""

    @abstractmethod
    def get_game(self, app_id: int) -> GameRecord | None: ...

    @abstractmethod
    def get_games(self, app_ids: Iterable[int]) -> dict[int, GameRecord]: ...

    @abstractmethod
    def existing_app_ids(self, app_ids: Iterable[int]) -> set[int]: ...

    @abstractmethod
    def list_app_ids(self) -> list[int]: ...

    @abstractmethod
    def upsert_game(self, payload: GamePayload) -> GameRecord: ...

    @abstractmethod
    def find_app_id_by_title(self, title: str) -> int | None: ...

    @abstractmethod
    def save_facet_result(
        self,
        app_id: int,
        facet: Facet,
        state: FacetState,
        vector: Sequence[float] | None,
    ) -> None: ...

    @abstractmethod
    def get_suggestions(self, app_id: int) -> SuggestionSnapshot | None: ...

    @abstractmethod
    def compare_and_swap_suggestions(
        self,
        app_id: int,
        expected_version: int,
        suggestions: Sequence[Suggestion],
    ) -> bool: ...

    @abstractmethod
    def clear_suggestions(self, app_id: int) -> None: ...

    @abstractmethod
    def similar_by_facet(
        self,
        app_id: int,
        facet: Facet,
        *,
        limit: int,
        threshold: float,
    ) -> list[tuple[int, float]]: ...

    @abstractmethod
    def facet_similarities(self, app_id: int, facet: Facet) -> dict[int, float]: ...

    @abstractmethod
    def embedding_coverage(self) -> EmbeddingCoverage: ...


def _naive_now() -> datetime:
    return utc_now().replace(tzinfo=None)


class SQLAlchemyGameStore(GameStore):
    """SQLite + sqlite-vec を用いたゲームストア。

    ファセット列ごとに vec0 のコサイン索引を持ち、拡張が使えない環境では
    全件走査で同じ結果契約 (しきい値・件数・ソース除外・appId 昇順のタイブレーク) を満たす。
    """

    VEC_TABLE_PREFIX = "game_vec_"

    def __init__(
        self,
        manager: DatabaseSessionManager,
        *,
        dimension: int = 768,
        enable_vec_index: bool = True,
        logger: BoundLogger | None = None,
    ) -> None:
        self._manager = manager
        self._dimension = dimension
        self._logger = logger or get_logger(__name__, component="game-store")
        self._vec_ready: set[Facet] = set()
        if enable_vec_index:
            self._prepare_vec_indexes()

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def vec_index_facets(self) -> frozenset[Facet]:
        return frozenset(self._vec_ready)

    # ---- games -------------------------------------------------------------

    def get_game(self, app_id: int) -> GameRecord | None:
        with self._manager.session() as session:
            model = session.get(Game, app_id)
            if model is None:
                return None
            return self._to_record(model)

    def get_games(self, app_ids: Iterable[int]) -> dict[int, GameRecord]:
        ids = sorted({int(app_id) for app_id in app_ids})
        if not ids:
            return {}
        with self._manager.session() as session:
            models = session.execute(select(Game).where(Game.app_id.in_(ids))).scalars().all()
            return {model.app_id: self._to_record(model) for model in models}

    def existing_app_ids(self, app_ids: Iterable[int]) -> set[int]:
        ids = {int(app_id) for app_id in app_ids}
        if not ids:
            return set()
        with self._manager.session() as session:
            rows = session.execute(select(Game.app_id).where(Game.app_id.in_(ids))).scalars()
            return set(rows)

    def list_app_ids(self) -> list[int]:
        with self._manager.session() as session:
            return list(session.execute(select(Game.app_id).order_by(Game.app_id)).scalars())

    def upsert_game(self, payload: GamePayload) -> GameRecord:
        now = _naive_now()
        with self._manager.transaction() as session:
            model = session.get(Game, payload.app_id)
            if model is None:
                model = Game(
                    app_id=payload.app_id,
                    facet_states={},
                    suggestions=[],
                    suggestions_version=0,
                    created_at=now,
                )
                session.add(model)
            model.title = payload.title
            model.short_description = payload.short_description
            model.detailed_description = payload.detailed_description
            model.header_image = payload.header_image
            model.media = list(payload.media)
            model.developers = list(payload.developers)
            model.publishers = list(payload.publishers)
            model.genres = list(payload.genres)
            model.categories = list(payload.categories)
            model.release_state = payload.release_state.value
            model.release_date = payload.release_date
            model.raw_payload = dict(payload.raw_payload)
            model.updated_at = now
            session.flush()
            record = self._to_record(model)
        self._logger.info("game_upserted", app_id=payload.app_id, title=payload.title)
        return record

    def find_app_id_by_title(self, title: str) -> int | None:
        normalized = " ".join(title.split())
        if not normalized:
            return None
        with self._manager.session() as session:
            exact = session.execute(
                select(Game.app_id)
                .where(func.lower(Game.title) == normalized.lower())
                .order_by(Game.app_id)
                .limit(1)
            ).scalar_one_or_none()
            if exact is not None:
                return exact
            escaped = normalized.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            fuzzy = session.execute(
                select(Game.app_id)
                .where(Game.title.ilike(f"%{escaped}%", escape="\\"))
                .order_by(func.length(Game.title), Game.app_id)
                .limit(1)
            ).scalar_one_or_none()
        return fuzzy

    # ---- facet embeddings --------------------------------------------------

    def save_facet_result(
        self,
        app_id: int,
        facet: Facet,
        state: FacetState,
        vector: Sequence[float] | None,
    ) -> None:
        column = FACET_COLUMNS[facet.value]
        blob: bytes | None = None
        if vector is not None:
            if len(vector) != self._dimension:
                msg = (
                    f"Embedding dimension mismatch for {facet.value}: "
                    f"expected {self._dimension}, got {len(vector)}"
                )
                raise GameStoreError(msg)
            blob = _embedding_to_blob(vector)

        with self._manager.transaction() as session:
            model = session.get(Game, app_id)
            if model is None:
                raise GameStoreError(f"Game {app_id} does not exist")
            setattr(model, column, blob)
            states = dict(model.facet_states or {})
            states[facet.value] = state.to_mapping()
            model.facet_states = states
            if facet in self._vec_ready:
                self._sync_vec_index(session, facet, app_id, blob)

    def similar_by_facet(
        self,
        app_id: int,
        facet: Facet,
        *,
        limit: int,
        threshold: float,
    ) -> list[tuple[int, float]]:
        if limit <= 0:
            return []
        source = self._load_vector(app_id, facet)
        if source is None:
            return []

        if facet in self._vec_ready:
            try:
                scored = self._search_with_vec_index(facet, source, limit + 1)
            except OperationalError as exc:
                self._logger.warning("sqlite_vec_query_failed", facet=facet.value, error=str(exc))
                self._vec_ready.discard(facet)
                scored = self._scan_similarities(app_id, facet, source)
        else:
            scored = self._scan_similarities(app_id, facet, source)

        ranked = [
            (candidate, score)
            for candidate, score in scored.items()
            if candidate != app_id and score >= threshold
        ]
        ranked.sort(key=lambda item: (-item[1], item[0]))
        return ranked[:limit]

    def facet_similarities(self, app_id: int, facet: Facet) -> dict[int, float]:
        source = self._load_vector(app_id, facet)
        if source is None:
            return {}
        scored = self._scan_similarities(app_id, facet, source)
        scored.pop(app_id, None)
        return scored

    def embedding_coverage(self) -> EmbeddingCoverage:
        computed = {facet.value: 0 for facet in Facet}
        no_signal = {facet.value: 0 for facet in Facet}
        with self._manager.session() as session:
            total = session.execute(select(func.count()).select_from(Game)).scalar_one()
            for facet in Facet:
                column = getattr(Game, FACET_COLUMNS[facet.value])
                computed[facet.value] = session.execute(
                    select(func.count()).select_from(Game).where(column.is_not(None))
                ).scalar_one()
            for states in session.execute(select(Game.facet_states)).scalars():
                for name, payload in (states or {}).items():
                    if payload.get("status") == FacetStatus.NO_SIGNAL.value and name in no_signal:
                        no_signal[name] += 1
        return EmbeddingCoverage(total_games=int(total), computed=computed, no_signal=no_signal)

    # ---- suggestions -------------------------------------------------------

    def get_suggestions(self, app_id: int) -> SuggestionSnapshot | None:
        with self._manager.session() as session:
            row = session.execute(
                select(
                    Game.suggestions,
                    Game.suggestions_version,
                    Game.suggestions_updated_at,
                ).where(Game.app_id == app_id)
            ).first()
        if row is None:
            return None
        suggestions, version, updated_at = row
        return SuggestionSnapshot(
            app_id=app_id,
            suggestions=_decode_suggestions(suggestions),
            version=int(version or 0),
            updated_at=as_utc(updated_at),
        )

    def compare_and_swap_suggestions(
        self,
        app_id: int,
        expected_version: int,
        suggestions: Sequence[Suggestion],
    ) -> bool:
        payload = [suggestion.to_payload() for suggestion in suggestions]
        with self._manager.transaction() as session:
            result = session.execute(
                update(Game)
                .where(Game.app_id == app_id, Game.suggestions_version == expected_version)
                .values(
                    suggestions=payload,
                    suggestions_version=expected_version + 1,
                    suggestions_updated_at=_naive_now(),
                )
                .execution_options(synchronize_session=False)
            )
            swapped = result.rowcount == 1
        if not swapped:
            self._logger.info(
                "suggestions_cas_conflict", app_id=app_id, expected_version=expected_version
            )
        return swapped

    def clear_suggestions(self, app_id: int) -> None:
        with self._manager.transaction() as session:
            session.execute(
                update(Game)
                .where(Game.app_id == app_id)
                .values(
                    suggestions=[],
                    suggestions_version=Game.suggestions_version + 1,
                    suggestions_updated_at=_naive_now(),
                )
                .execution_options(synchronize_session=False)
            )
        self._logger.info("suggestions_cleared", app_id=app_id)

    # ---- internals ---------------------------------------------------------

    def _prepare_vec_indexes(self) -> None:
        for facet in Facet:
            table = self._vec_table(facet)
            if not self._manager.ensure_vec_index(
                table_name=table, column="embedding", dimension=self._dimension
            ):
                continue
            column = FACET_COLUMNS[facet.value]
            try:
                with self._manager.engine.begin() as conn:
                    conn.execute(
                        text(
                            f"INSERT INTO {table}(rowid, embedding) "
                            f"SELECT app_id, {column} FROM games "
                            f"WHERE {column} IS NOT NULL "
                            f"AND app_id NOT IN (SELECT rowid FROM {table})"
                        )
                    )
            except OperationalError as exc:
                self._logger.warning(
                    "sqlite_vec_backfill_failed", facet=facet.value, error=str(exc)
                )
                continue
            self._vec_ready.add(facet)

    def _vec_table(self, facet: Facet) -> str:
        return f"{self.VEC_TABLE_PREFIX}{facet.value}"

    def _sync_vec_index(
        self,
        session: Session,
        facet: Facet,
        app_id: int,
        blob: bytes | None,
    ) -> None:
        table = self._vec_table(facet)
        try:
            session.execute(text(f"DELETE FROM {table} WHERE rowid = :app_id"), {"app_id": app_id})
            if blob is not None:
                session.execute(
                    text(f"INSERT INTO {table}(rowid, embedding) VALUES (:app_id, :embedding)"),
                    {"app_id": app_id, "embedding": blob},
                )
        except OperationalError as exc:
            self._logger.warning("sqlite_vec_sync_failed", facet=facet.value, error=str(exc))
            self._vec_ready.discard(facet)

    def _search_with_vec_index(
        self,
        facet: Facet,
        source: tuple[float, ...],
        keep: int,
    ) -> dict[int, float]:
        """近傍探索で上位 `keep` 件を確定させるのに必要な候補を集める。

        vec0 は k 件目と同じ距離の行のどれを返すかを保証しないため、境界の距離が
        取得範囲の末尾と一致する間は k を広げて取り直す。
        """

        k = keep + 1
        while True:
            rows = self._query_vec_index(facet, source, k)
            if knn_window_settled([distance for _, distance in rows], keep=keep, k=k):
                return {app_id: 1.0 - distance for app_id, distance in rows}
            k *= 2

    def _query_vec_index(
        self,
        facet: Facet,
        source: tuple[float, ...],
        k: int,
    ) -> list[tuple[int, float]]:
        table = self._vec_table(facet)
        with self._manager.session() as session:
            rows = session.execute(
                text(
                    f"SELECT rowid AS app_id, distance FROM {table} "
                    "WHERE embedding MATCH :query AND k = :k ORDER BY distance"
                ),
                {"query": _embedding_to_blob(source), "k": k},
            ).all()
        return [(int(row.app_id), float(row.distance)) for row in rows]

    def _scan_similarities(
        self,
        app_id: int,
        facet: Facet,
        source: tuple[float, ...],
    ) -> dict[int, float]:
        column = getattr(Game, FACET_COLUMNS[facet.value])
        with self._manager.session() as session:
            rows = session.execute(
                select(Game.app_id, column).where(column.is_not(None), Game.app_id != app_id)
            ).all()
        scored: dict[int, float] = {}
        for candidate_id, blob in rows:
            vector = _blob_to_embedding(blob)
            if len(vector) != len(source):
                continue
            similarity = cosine_similarity(source, vector)
            if similarity is not None:
                scored[int(candidate_id)] = similarity
        return scored

    def _load_vector(self, app_id: int, facet: Facet) -> tuple[float, ...] | None:
        column = getattr(Game, FACET_COLUMNS[facet.value])
        with self._manager.session() as session:
            blob = session.execute(select(column).where(Game.app_id == app_id)).scalar_one_or_none()
        if blob is None:
            return None
        return _blob_to_embedding(blob)

    def _to_record(self, model: Game) -> GameRecord:
        embeddings: dict[Facet, tuple[float, ...]] = {}
        for facet in Facet:
            blob = getattr(model, FACET_COLUMNS[facet.value])
            if blob is not None:
                embeddings[facet] = _blob_to_embedding(blob)
        states: dict[Facet, FacetState] = {}
        for name, payload in (model.facet_states or {}).items():
            try:
                states[Facet(name)] = FacetState.from_mapping(payload)
            except (KeyError, ValueError):
                self._logger.warning("facet_state_unreadable", app_id=model.app_id, facet=name)
        return GameRecord(
            app_id=model.app_id,
            title=model.title,
            short_description=model.short_description or "",
            detailed_description=model.detailed_description or "",
            header_image=model.header_image,
            media=tuple(model.media or ()),
            developers=tuple(model.developers or ()),
            publishers=tuple(model.publishers or ()),
            genres=tuple(model.genres or ()),
            categories=tuple(model.categories or ()),
            release_state=ReleaseState(model.release_state or ReleaseState.RELEASED.value),
            release_date=model.release_date,
            raw_payload=dict(model.raw_payload or {}),
            embeddings=embeddings,
            facet_states=states,
            suggestions=_decode_suggestions(model.suggestions),
            suggestions_version=int(model.suggestions_version or 0),
            suggestions_updated_at=as_utc(model.suggestions_updated_at),
            created_at=as_utc(model.created_at),
            updated_at=as_utc(model.updated_at),
        )


def _decode_suggestions(payload: Sequence[dict] | None) -> tuple[Suggestion, ...]:
    return tuple(Suggestion.from_mapping(item) for item in payload or ())


def knn_window_settled(distances: Sequence[float], *, keep: int, k: int) -> bool:
    """距離順の k 件の結果で、上位 `keep` 件と同距離の行を取りこぼしていないか。

    取得件数が k 未満なら全件が返っている。そうでなければ、keep 件目の距離が
    末尾の距離より小さいときだけ、範囲外の行がそれと並ぶことはない。
    """

    if len(distances) < k or len(distances) <= keep:
        return True
    return distances[keep - 1] < distances[-1]


def cosine_similarity(x: Sequence[float], y: Sequence[float]) -> float | None:
    """コサイン類似度。どちらかがゼロベクトルなら None。"""

    dot = sum(a * b for a, b in zip(x, y, strict=True))
    norm_x = math.sqrt(sum(a * a for a in x))
    norm_y = math.sqrt(sum(b * b for b in y))
    if norm_x == 0 or norm_y == 0:
        return None
    return dot / (norm_x * norm_y)


def _embedding_to_blob(values: Sequence[float]) -> bytes:
    return array("f", (float(value) for value in values)).tobytes()


def _blob_to_embedding(blob: bytes) -> tuple[float, ...]:
    buf = array("f")
    buf.frombytes(bytes(blob))
    return tuple(float(value) for value in buf)
