"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Redis (primary session store)
    redis_url: str = "redis://localhost:6379"
    redis_socket_timeout_seconds: float = 2.0
    session_ttl_seconds: int = 86400  # 24h from last write
    user_index_ttl_seconds: int = 86400 * 30

    # Qdrant (semantic index + secure knowledge)
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: str | None = None
    qdrant_timeout_seconds: int = 5
    conversation_collection: str = "conversation_embeddings"
    knowledge_collection: str = "secure_knowledge"

    # Embeddings
    embedding_provider: str = "hash"  # hash | openai
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 384
    openai_api_key: str = ""
    openai_base_url: str | None = None
    embedding_timeout_seconds: float = 5.0

    # Public knowledge base (hosted RAG)
    public_kb_url: str = "https://api.elevenlabs.io"
    public_kb_index_id: str = ""
    public_kb_api_key: str = ""
    public_kb_model: str = "intfloat/e5-mistral-7b-instruct"

    # Knowledge federation
    knowledge_timeout_seconds: float = 4.0
    ranker_max_results: int = 5
    ranker_tie_epsilon: float = 0.1
    high_latency_threshold_ms: float = 500.0

    # Conversation
    min_embedding_length: int = 10  # user messages not longer than this are not indexed
    default_tenant_id: str = "default"
    default_season: str = "2025-26"
    default_focus_team: str = ""

    # App
    debug: bool = False
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
