"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development: no external
geocoder or plan generator is configured, so the service runs with the
static city table and degraded fallback plans out of the box.

Usage:
    from backend.app.core.config import settings
    print(settings.DEDUPE_WINDOW_MINUTES)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Relief Alert Engine"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Intake ──
    DEDUPE_WINDOW_MINUTES: float = 30.0
    MIN_DESCRIPTION_LENGTH: int = 20

    # ── Geocoder collaborator ──
    GEOCODER_URL: Optional[str] = None  # Nominatim-compatible base URL
    GEOCODER_USER_AGENT: str = "relief-alert-engine/1.0"
    GEOCODER_TIMEOUT_SECONDS: float = 3.0

    # ── Plan generator collaborator ──
    PLANNER_API_URL: Optional[str] = None
    PLANNER_API_KEY: Optional[str] = None
    PLANNER_TIMEOUT_SECONDS: float = 10.0
    PLANNER_MAX_RETRIES: int = 2
    PLANNER_BACKOFF_BASE_SECONDS: float = 1.0

    # ── Live map ──
    MAP_FALLBACK_LAT: float = 20.5937  # country-level centroid (India)
    MAP_FALLBACK_LNG: float = 78.9629

    # ── Change feed ──
    FEED_BUFFER_SIZE: int = 1000
    FEED_SUBSCRIBER_QUEUE_SIZE: int = 256

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
