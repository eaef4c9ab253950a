"""アプリケーション全体で共有する設定ローダー。"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import AnyHttpUrl, BaseModel, Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError
from .retry import RetryPolicy

EnvName = Literal["local", "test", "staging", "production"]

FACET_NAMES = ("aesthetic", "atmosphere", "mechanics", "narrative", "dynamics")

# カタログ呼び出しの最悪時間に上乗せする、upsert などロック内の残りの処理分
LOCK_TTL_MARGIN_SECONDS = 15.0

BALANCED_FACET_WEIGHTS: dict[str, float] = {
    "aesthetic": 0.25,
    "atmosphere": 0.25,
    "mechanics": 0.25,
    "narrative": 0.25,
    "dynamics": 0.0,
}


class RetrySettings(BaseModel):
    """外部呼び出しの再試行設定。"""

    max_attempts: int = Field(3, ge=1, description="最大試行回数")
    initial_delay_seconds: float = Field(1.0, ge=0, description="初回待機秒数")
    multiplier: float = Field(2.0, ge=1, description="バックオフ倍率")
    max_delay_seconds: float = Field(10.0, ge=0, description="待機秒数の上限")

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            initial_delay=self.initial_delay_seconds,
            multiplier=self.multiplier,
            max_delay=self.max_delay_seconds,
        )


class SteamSettings(BaseModel):
    """Steam ストア API の設定。"""

    store_base_url: AnyHttpUrl = Field(
        "https://store.steampowered.com", description="Steam ストアのベース URL"
    )
    language: str = Field("english", description="appdetails/storesearch の言語")
    country_code: str = Field("US", description="storesearch の国コード")
    timeout_seconds: float = Field(10.0, gt=0, description="HTTP タイムアウト")
    min_request_interval_seconds: float = Field(
        2.0, ge=0, description="連続するカタログ呼び出しの最小間隔"
    )
    search_cache_size: int = Field(256, ge=1, description="検索結果 LRU キャッシュの上限")
    retry: RetrySettings = Field(
        default_factory=lambda: RetrySettings(
            max_attempts=5, initial_delay_seconds=3.0, max_delay_seconds=30.0
        )
    )

    def call_budget_seconds(self, *, concurrent_callers: int = 1) -> float:
        """appdetails 1 回が再試行込みで掛かりうる最大秒数。

        試行ごとにタイムアウトと、他の呼び出し元を含めた最小間隔の待ちを見込む。
        """

        policy = self.retry.to_policy()
        per_attempt = self.timeout_seconds + self.min_request_interval_seconds * concurrent_callers
        return policy.total_delay() + per_attempt * policy.max_attempts


class GeminiSettings(BaseModel):
    """Gemini(API) 利用時の設定。"""

    api_key: SecretStr = Field(..., description="Google API key for Gemini")
    model: str = Field("text-embedding-004", description="埋め込みモデル名")
    rate_limit_per_minute: int = Field(60, ge=1, description="埋め込み API の分間上限")
    max_batch_size: int = Field(32, ge=1, description="1 リクエストにまとめるテキスト数")
    retry: RetrySettings = Field(default_factory=RetrySettings)


class GeneratorSettings(BaseModel):
    """類似ゲーム候補を生成するモデルの設定。"""

    model: str = Field("gemini-1.5-flash", description="生成モデル名")
    max_suggestions: int = Field(10, ge=1, le=30, description="一度に依頼する候補数")
    timeout_seconds: float = Field(60.0, gt=0, description="生成リクエストのタイムアウト")
    image_timeout_seconds: float = Field(10.0, gt=0, description="画像取得のタイムアウト")
    retry: RetrySettings = Field(
        default_factory=lambda: RetrySettings(max_attempts=2, initial_delay_seconds=1.0)
    )


class StorageSettings(BaseModel):
    """データ保存関連の設定。"""

    sqlite_path: Path = Field(Path("./var/game_discovery.db"), description="SQLite DB のパス")
    embedding_dimension: int = Field(768, ge=1, description="ファセット埋め込みの次元数")
    enable_vec_index: bool = Field(True, description="sqlite-vec の近傍探索を利用する")


class IngestSettings(BaseModel):
    """取り込みパイプラインの設定。"""

    lock_ttl_seconds: float = Field(60.0, gt=0, description="取り込みロックの有効期限")
    wait_max_attempts: int = Field(10, ge=1, description="ロック待ちのポーリング回数")
    wait_delay_seconds: float = Field(1.0, ge=0, description="ロック待ちのポーリング間隔")


class SuggestionSettings(BaseModel):
    """候補キャッシュと自動取り込みの設定。"""

    auto_ingest_cap: int = Field(6, ge=0, description="1 回の自動取り込みで処理する最大件数")
    generate_on_auto_ingest: bool = Field(
        False, description="自動取り込みしたゲームで即座に候補生成するか"
    )
    auto_ingest_memory_size: int = Field(
        1024, ge=1, description="自動取り込みに成功した appId を覚えておく件数"
    )
    poll_interval_seconds: float = Field(2.0, ge=0, description="候補更新ポーリングの間隔")
    poll_max_attempts: int = Field(30, ge=1, description="候補更新ポーリングの最大回数")
    max_explanation_length: int = Field(400, ge=20, description="説明文の最大文字数")


class SimilaritySettings(BaseModel):
    """類似検索の設定。"""

    facet_weights: dict[str, float] = Field(
        default_factory=lambda: dict(BALANCED_FACET_WEIGHTS),
        description="all モードで使うファセット重み (合計 1)",
    )
    default_limit: int = Field(12, ge=1, description="既定の取得件数")
    max_limit: int = Field(24, ge=1, description="取得件数の上限")
    default_threshold: float = Field(0.5, ge=-1.0, le=1.0, description="既定の類似度しきい値")

    @field_validator("facet_weights")
    @classmethod
    def _validate_weights(cls, value: dict[str, float]) -> dict[str, float]:
        unknown = set(value) - set(FACET_NAMES)
        if unknown:
            msg = f"Unknown facets in weight map: {sorted(unknown)}"
            raise ValueError(msg)
        if any(weight < 0 for weight in value.values()):
            msg = "Facet weights must be non-negative"
            raise ValueError(msg)
        if abs(sum(value.values()) - 1.0) > 1e-6:
            msg = "Facet weights must sum to 1"
            raise ValueError(msg)
        return value


class AppSettings(BaseSettings):
    """共有設定。`.env` 読み込みと環境変数バリデーションを担う。"""

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    environment: EnvName = Field("local", description="実行環境識別子")
    log_level: str = Field("INFO", description="ルートロガーのログレベル")
    log_json: bool = Field(False, description="JSON 形式でログを出力する")
    background_workers: int = Field(4, ge=1, description="後続処理を実行するワーカー数")
    embedding_provider: str = Field("gemini", description="登録済み埋め込みプロバイダー名")
    gemini: GeminiSettings
    steam: SteamSettings = Field(default_factory=SteamSettings)
    generator: GeneratorSettings = Field(default_factory=GeneratorSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    ingest: IngestSettings = Field(default_factory=IngestSettings)
    suggestions: SuggestionSettings = Field(default_factory=SuggestionSettings)
    similarity: SimilaritySettings = Field(default_factory=SimilaritySettings)

    def ingest_lock_ttl_seconds(self) -> float:
        """取り込みロックの実効 TTL。

        ロックはカタログ呼び出しの間ずっと保持されるため、設定値が呼び出しの最悪時間より
        短い場合はそこまで引き上げる。途中で期限が切れると二重取り込みになる。
        """

        budget = self.steam.call_budget_seconds(concurrent_callers=self.background_workers)
        return max(self.ingest.lock_ttl_seconds, budget + LOCK_TTL_MARGIN_SECONDS)


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """設定をロードし、再利用する。

    LRU キャッシュによりプロセス内での重複読み込みを防ぎ、
    `pytest` などから `get_settings.cache_clear()` を呼び出すことで再読込できる。
    """

    try:
        return AppSettings()
    except ValidationError as exc:  # pragma: no cover - ValidationError carries context
        raise ConfigurationError(str(exc)) from exc


__all__ = [
    "AppSettings",
    "BALANCED_FACET_WEIGHTS",
    "EnvName",
    "FACET_NAMES",
    "GeminiSettings",
    "GeneratorSettings",
    "IngestSettings",
    "LOCK_TTL_MARGIN_SECONDS",
    "RetrySettings",
    "SimilaritySettings",
    "SteamSettings",
    "StorageSettings",
    "SuggestionSettings",
    "get_settings",
]
