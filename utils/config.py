"""
Configuration Utility - Environment Variables Management

Centralized configuration loading from .env files using pydantic-settings.
Type-safe access to all environment variables with validation.

Usage:
    from utils.config import settings

    base_url = settings.TRACKER_BASE_URL
    page_size = settings.PAGE_SIZE
"""

import os
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Tracker API Configuration
    TRACKER_BASE_URL: str = Field(default="https://your-domain.atlassian.net")
    TRACKER_EMAIL: str = Field(default="")
    TRACKER_API_TOKEN: str = Field(default="")
    TRACKER_AUTH_SCHEME: str = Field(default="Basic")
    API_TIMEOUT: int = Field(default=30, gt=0)

    # Sync Configuration
    SYNC_PROJECTS: list[str] = Field(default_factory=list)
    SYNC_SCHEDULE_CRON: str = Field(default="0 3 * * *")
    PAGE_SIZE: int = Field(default=50, gt=0)
    BATCH_SIZE: int = Field(default=50, gt=0)
    FETCH_CONCURRENCY: int | None = Field(default=None, gt=0)
    RESULT_CHANNEL_SIZE: int = Field(default=1000, gt=0)

    # Retry Configuration (rate-limit responses only)
    RETRY_MAX_RETRIES: int = Field(default=5, ge=0)
    RETRY_BASE_DELAY: float = Field(default=1.0, ge=0)
    RETRY_MAX_JITTER: float = Field(default=2.0, ge=0)

    # Extraction Configuration
    EXTRACTION_WORKERS: int = Field(default=4, gt=0)
    EXTRACTION_MAX_RETRIES: int = Field(default=3, gt=0)
    EXTRACTION_RETRY_DELAY_MINUTES: int = Field(default=5, ge=0)
    EXTRACTION_IDLE_SLEEP: float = Field(default=5.0, gt=0)
    EXTRACTION_DEFAULT_USER: str = Field(default="system")
    EXTRACTION_DEFAULT_PRIORITY: str = Field(default="medium")

    # Per-platform rate limiter permits
    GOOGLE_DOCS_PERMITS: int = Field(default=50, gt=0)
    GOOGLE_SHEETS_PERMITS: int = Field(default=100, gt=0)
    GOOGLE_SLIDES_PERMITS: int = Field(default=50, gt=0)
    SLACK_THREAD_PERMITS: int = Field(default=20, gt=0)
    SLACK_MESSAGE_PERMITS: int = Field(default=20, gt=0)

    # External platform credentials
    GOOGLE_ACCESS_TOKEN: str | None = Field(default=None)
    SLACK_BOT_TOKEN: str | None = Field(default=None)

    # Redis Configuration
    REDIS_URL: str = Field(default="redis://redis:6379/0")
    REDIS_MAX_CONNECTIONS: int = Field(default=10)
    REDIS_CHANNEL_SYNC: str = Field(default="tracker.sync_completed")

    # Database Configuration
    SQLITE_PATH: str = Field(default="/app/data/db/triage.db")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")

    # Application Metadata
    ENVIRONMENT: str = Field(default="production")
    APP_NAME: str = Field(default="triage-pipeline")
    APP_VERSION: str = Field(default="0.1.0")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    def fetch_concurrency(self) -> int:
        """Global cap on simultaneous detail fetches.

        Returns:
            FETCH_CONCURRENCY when set, else min(100, 10 x available CPUs)
        """
        if self.FETCH_CONCURRENCY is not None:
            return self.FETCH_CONCURRENCY
        return min(100, 10 * (os.cpu_count() or 1))


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Singleton Settings instance
    """
    return Settings()


# Global settings instance
settings = get_settings()
