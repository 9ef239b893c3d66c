"""Application configuration using Pydantic Settings."""

from datetime import time
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./matchday.db"
    DB_ECHO: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"

    # API Security
    API_KEY: str = ""  # Optional API key for mutating endpoints
    API_KEY_HEADER: str = "X-API-Key"
    ACTOR_HEADER: str = "X-Actor-Id"  # Identity issued upstream, recorded in audit fields
    RATE_LIMIT_PER_MINUTE: str = "120/minute"

    # ═══════════════════════════════════════════════════════════════
    # Scheduling
    # ═══════════════════════════════════════════════════════════════

    DEFAULT_KICKOFF_TIME: time = time(13, 0)  # First fixture of a match day
    FIXTURE_INTERVAL_MINUTES: int = 90  # Gap between consecutive group fixtures
    KNOCKOUT_FORMAT: str = "final_four"  # Category final_format that allows bracket seeding
    QUALIFIERS_PER_GROUP: int = 2

    # Default points table (consumed by the standings collaborator)
    POINTS_WIN: int = 3
    POINTS_DRAW: int = 1
    POINTS_LOSS: int = 0

    # ═══════════════════════════════════════════════════════════════
    # Realtime broadcast
    # ═══════════════════════════════════════════════════════════════

    SUBSCRIBE_COOLDOWN_SECONDS: int = 2  # Per connection, per topic
    WS_ADMISSION_PER_MINUTE: int = 50  # Per client origin, moving window
    BROADCAST_QUEUE_SIZE: int = 1000
    BROADCAST_SEND_TIMEOUT_SECONDS: float = 5.0

    # Sentry
    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = "development"
    SENTRY_TRACES_SAMPLE_RATE: float = 0.05

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
