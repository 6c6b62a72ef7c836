"""
Application settings for the LifeCompass agent service.

Values are read from the process environment and an optional ``.env`` file.
Every external collaborator is optional: without ``DATABASE_URL`` the service
runs on in-memory demo stores, without ``NEO4J_URI`` graph search returns no
facts, and without ``LLM_API_KEY`` a canned demo completion is streamed.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Service
    SERVICE_NAME: str = "compass-agent"
    SERVICE_VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    CORS_ORIGINS: List[str] = Field(default_factory=lambda: ["*"])

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = Field(default="json", description="json or console")

    # Relational store
    DATABASE_URL: Optional[str] = None
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_INITIAL_BACKOFF: float = 0.2
    DB_RETRY_MAX_BACKOFF: float = 2.0

    # Sessions
    SESSION_TTL_HOURS: int = 24
    HISTORY_LIMIT: int = 10

    # Graph store
    NEO4J_URI: Optional[str] = None
    NEO4J_USERNAME: str = "neo4j"
    NEO4J_PASSWORD: Optional[str] = None
    GRAPH_SEARCH_TIMEOUT_SECONDS: float = 3.0
    GRAPH_SEARCH_LIMIT: int = 10

    # Chat completion (OpenAI-compatible endpoint)
    LLM_API_KEY: Optional[str] = None
    LLM_BASE_URL: str = "https://api.deepseek.com/v1"
    LLM_MODEL: str = "deepseek-chat"
    LLM_TEMPERATURE: float = 0.7
    LLM_MAX_TOKENS: int = 1000

    # Embeddings
    EMBEDDING_API_KEY: Optional[str] = None
    EMBEDDING_BASE_URL: Optional[str] = None
    EMBEDDING_MODEL: str = "text-embedding-3-small"

    # Retrieval
    USE_VECTOR_SEARCH: bool = True
    USE_GRAPH_SEARCH: bool = True
    HYBRID_SEARCH_LIMIT: int = 5
    HYBRID_TEXT_WEIGHT: float = 0.3
    INTERACTIONS_LIMIT: int = 10
    ADVISOR_RECOMMENDATION_LIMIT: int = 5
    TOOL_TIMEOUT_SECONDS: float = 15.0

    # Context window budgets (characters)
    MAX_CONTEXT_CHARS: int = 12000
    MAX_SECTION_CHARS: int = 4000
    MAX_SNIPPET_CHARS: int = 1200

    # Rate limiting on chat endpoints
    RATE_LIMIT_REQUESTS: int = 30
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    @property
    def database_configured(self) -> bool:
        return bool(self.DATABASE_URL)

    @property
    def graph_configured(self) -> bool:
        return bool(self.NEO4J_URI and self.NEO4J_PASSWORD)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
