"""Configuration management using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MARKPROMPT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///data/markprompt.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    log_json: bool = False
    cors_origins: str = "http://localhost:3000"
    # Requests whose Origin is listed here bypass the tier gates.
    first_party_origins: str = "https://markprompt.com,http://localhost:3000"
    # Bearer token expected from the connector sync service.
    api_token: str | None = None

    # Content processing
    context_tokens_cutoff: int = 4000
    approx_chars_per_token: int = 4
    min_content_length: int = 5

    # Embedding
    embedding_backend: str = "local"  # "local" | "openai"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_batch_size: int = 32
    embedding_max_batch_tokens: int = 8000
    embedding_max_attempts: int = 5
    openai_api_base: str = "https://api.openai.com/v1"
    openai_api_key: str | None = None
    openai_embedding_model: str = "text-embedding-ada-002"

    # Retrieval
    sections_match_threshold: float = 0.5
    sections_match_count: int = 10
    sections_match_count_max: int = 50
    sections_min_content_length: int = 30
    search_default_limit: int = 10
    search_max_limit: int = 50

    # Rate limits, "<requests>/<window seconds>"
    rate_limit_backend: str = "memory"  # "memory" | "redis"
    redis_url: str = "redis://localhost:6379"
    rate_limit_embeddings: str = "200/3600"
    rate_limit_sections: str = "100/60"
    rate_limit_search: str = "1000/60"

    # Quota cache TTLs
    completions_cache_ttl_seconds: int = 3600
    embeddings_cache_ttl_seconds: int = 86400
    tier_cache_ttl_seconds: int = 3600
    cache_max_size: int = 1000

    # GitHub
    github_token: str | None = None
    github_api_base: str = "https://api.github.com"
    github_payload_max_bytes: int = 4_000_000

    # Website
    custom_page_fetch_service_url: str | None = None
    custom_page_fetch_token: str | None = None

    # Nango
    nango_host: str = "https://api.nango.dev"
    nango_secret_key: str | None = None
    nango_page_size: int = 100

    # HTTP
    http_timeout_seconds: float = 30.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
