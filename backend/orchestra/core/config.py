"""
Orchestra - Configuration
=========================

All application settings loaded from environment variables.
Uses pydantic-settings for validation and type conversion.
"""

from functools import lru_cache
from typing import Literal

from pydantic import RedisDsn, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    APP_NAME: str = "Orchestra"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Public base URL the agent platform calls back on
    APP_URL: str = "http://localhost:3000"

    # ==========================================================================
    # API
    # ==========================================================================
    API_V1_PREFIX: str = "/api/v1"
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # ==========================================================================
    # Database (supports SQLite and PostgreSQL)
    # ==========================================================================
    DATABASE_URL: str = "sqlite+aiosqlite:///./orchestra.db"
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_ECHO: bool = False

    @computed_field  # type: ignore[misc]
    @property
    def is_sqlite(self) -> bool:
        return "sqlite" in self.DATABASE_URL

    # ==========================================================================
    # Job Queue
    # ==========================================================================
    QUEUE_BACKEND: Literal["redis", "memory"] = "redis"
    REDIS_URL: RedisDsn = "redis://localhost:6379/0"  # type: ignore
    QUEUE_NAME: str = "orchestra:jobs"
    QUEUE_MAX_ATTEMPTS: int = 5
    QUEUE_RETRY_BACKOFF_SECONDS: float = 10.0
    QUEUE_POLL_TIMEOUT_SECONDS: int = 5
    QUEUE_MEMORY_HISTORY_LIMIT: int = 1000

    # ==========================================================================
    # Authentication (token verification only)
    # ==========================================================================
    SECRET_KEY: str = "CHANGE-ME-IN-PRODUCTION-USE-LONG-RANDOM-STRING"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # ==========================================================================
    # External Services
    # ==========================================================================
    CURSOR_API_URL: str = "https://api.cursor.com/v0/agents"
    CURSOR_WEBHOOK_SECRET: str = "default-webhook-secret"
    CURSOR_API_TIMEOUT_SECONDS: float = 30.0

    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_API_TIMEOUT_SECONDS: float = 30.0

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @computed_field  # type: ignore[misc]
    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @computed_field  # type: ignore[misc]
    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @computed_field  # type: ignore[misc]
    @property
    def is_test(self) -> bool:
        return self.ENVIRONMENT == "test"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
