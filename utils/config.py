"""
Configuration Utility - Environment Variables Management

Centralized configuration loading from .env files using pydantic-settings.
Type-safe access to all environment variables with validation.

Usage:
    from utils.config import settings

    cache_dir = settings.CACHE_DIR
    max_attempts = settings.MAX_RETRY_ATTEMPTS

Components never read ``settings`` directly; entry points build the store,
cache, fetcher and dispatcher from it and inject them.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Database Configuration
    DATABASE_PATH: str = Field(default="./data/app.db")

    # Content Cache Configuration
    CACHE_DIR: str = Field(default="./cache/articles")
    CACHE_EXTENSION: str = Field(default="html")
    CACHE_MAX_AGE_DAYS: int = Field(default=30, ge=1)

    # Processing Configuration
    PROCESSING_TIMEOUT_SECONDS: int = Field(default=60, ge=1)
    MAX_RETRY_ATTEMPTS: int = Field(default=3, ge=1)
    RETRY_DELAY_MINUTES: int = Field(default=5, ge=0)
    WORKER_CONCURRENCY: int = Field(default=2, ge=1)
    LONG_MESSAGE_THRESHOLD: int = Field(default=1000)

    # Fetch Configuration
    FETCH_TIMEOUT_SECONDS: int = Field(default=30, ge=1)
    FETCH_MAX_REDIRECTS: int = Field(default=5, ge=0)
    FETCH_MAX_BYTES: int = Field(default=10 * 1024 * 1024)
    DNS_TIMEOUT_SECONDS: float = Field(default=5.0)
    USER_AGENT: str = Field(
        default="Mozilla/5.0 (compatible; lateread/1.0; +https://github.com/wannabehero)"
    )

    # Scheduler Configuration
    RETRY_SCHEDULE_CRON: str = Field(default="*/5 * * * *")
    CACHE_CLEANUP_CRON: str = Field(default="0 3 * * *")

    # LLM Configuration
    ANTHROPIC_API_KEY: str | None = Field(default=None)
    TAGGING_MODEL: str = Field(default="claude-haiku-4-5")
    SUMMARY_MODEL: str = Field(default="claude-sonnet-4-5")

    # Redis Configuration
    REDIS_URL: str = Field(default="redis://redis:6379/0")
    REDIS_MAX_CONNECTIONS: int = Field(default=10)
    REDIS_CHANNEL_EVENTS: str = Field(default="articles.events")
    EVENTS_ENABLED: bool = Field(default=False)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")

    # Application Metadata
    ENVIRONMENT: str = Field(default="production")
    APP_NAME: str = Field(default="lateread")
    APP_VERSION: str = Field(default="0.1.0")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Singleton Settings instance
    """
    return Settings()


# Global settings instance
settings = get_settings()
