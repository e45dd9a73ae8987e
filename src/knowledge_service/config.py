"""Configuration for the knowledge service.

Each concern gets its own ``BaseSettings`` group with an environment prefix,
aggregated in the module-level ``settings`` object. Components receive the
group they need explicitly; nothing reads ``settings`` at call time except
the composition root and the outer surfaces.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SearchSettings(BaseSettings):
    """Hybrid search tuning."""

    model_config = SettingsConfigDict(env_prefix="KS_SEARCH_")

    default_limit: int = Field(default=5, ge=1, le=100)
    max_limit: int = Field(default=50, ge=1, le=500)
    # Semantic hits above this similarity take precedence in the combined bucket
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    # Similarity/distance reported when semantic search degrades to text search
    fallback_similarity: float = Field(default=0.5, ge=0.0, le=1.0)
    min_token_length: int = Field(default=3, ge=1)


class DeduplicationSettings(BaseSettings):
    """Smart-create probe and candidate sizing."""

    model_config = SettingsConfigDict(env_prefix="KS_DEDUP_")

    candidate_limit: int = Field(default=10, ge=1, le=100)
    probe_chars: int = Field(default=200, ge=20)
    probe_words: int = Field(default=10, ge=1)
    probe_min_word_length: int = Field(default=4, ge=1)


class SchedulerSettings(BaseSettings):
    """Due-reminder polling."""

    model_config = SettingsConfigDict(env_prefix="KS_SCHEDULER_")

    poll_interval_seconds: float = Field(default=60.0, gt=0.0)
    max_concurrency: int = Field(default=1, ge=1, le=64)
    claim_lease_seconds: float = Field(default=300.0, gt=0.0)
    instance_id: str | None = None


class EmbeddingSettings(BaseSettings):
    """Embedding gateway selection."""

    model_config = SettingsConfigDict(env_prefix="KS_EMBEDDING_")

    provider: Literal["sentence-transformers", "http", "none"] = "sentence-transformers"
    model_name: str = "all-MiniLM-L6-v2"
    dimensions: int = Field(default=384, ge=1)
    api_url: str = "https://api.openai.com/v1/embeddings"
    api_key: str | None = None
    timeout_seconds: float = Field(default=10.0, gt=0.0)
    max_chars: int = Field(default=32_768, ge=1)


class OracleSettings(BaseSettings):
    """Decision oracle used for ambiguous merges."""

    model_config = SettingsConfigDict(env_prefix="KS_ORACLE_")

    enabled: bool = True
    api_key: str | None = None
    base_url: str = "https://api.anthropic.com"
    model: str = "claude-haiku-4-5"
    temperature: float = Field(default=0.1, ge=0.0, le=1.0)
    timeout_ms: int = Field(default=8000, ge=100)
    max_tokens: int = Field(default=1024, ge=64)


class NotificationSettings(BaseSettings):
    """Reminder delivery."""

    model_config = SettingsConfigDict(env_prefix="KS_NOTIFY_")

    provider: Literal["telegram", "log"] = "log"
    telegram_bot_token: str | None = None
    telegram_api_base: str = "https://api.telegram.org"
    timeout_seconds: float = Field(default=10.0, gt=0.0)
    # owner_id -> chat id, parsed from JSON (KS_NOTIFY_CHANNELS='{"owner-1": "12345"}')
    channels: dict[str, str] = Field(default_factory=dict)
    default_chat_id: str | None = None


class StorageSettings(BaseSettings):
    """Datastore selection and Qdrant connection."""

    model_config = SettingsConfigDict(env_prefix="KS_QDRANT_")

    backend: Literal["qdrant", "memory"] = "qdrant"
    url: str | None = None
    storage_path: str | None = None
    reminders_collection: str = "reminders"
    memories_collection: str = "memories"
    scroll_batch_size: int = Field(default=256, ge=1)


class HTTPSettings(BaseSettings):
    """HTTP interface."""

    model_config = SettingsConfigDict(env_prefix="KS_HTTP_")

    host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1, le=65535)
    log_level: str = "INFO"
    mcp_transport: Literal["stdio", "http"] = "stdio"
    start_scheduler: bool = True


class Settings(BaseSettings):
    """Aggregated settings for the whole service."""

    search: SearchSettings = Field(default_factory=SearchSettings)
    dedup: DeduplicationSettings = Field(default_factory=DeduplicationSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    oracle: OracleSettings = Field(default_factory=OracleSettings)
    notification: NotificationSettings = Field(default_factory=NotificationSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    http: HTTPSettings = Field(default_factory=HTTPSettings)


settings = Settings()
