"""
Roomify Match Core — Application Configuration

Loads all configuration from environment variables (and an optional .env file)
using Pydantic Settings.  A cached ``get_settings()`` helper is provided so that
FastAPI dependency-injection, the chat client and the background expiry sweep
always receive the same validated instance without re-parsing the environment.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the match and chat core."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Database
    # ------------------------------------------------------------------ #
    DATABASE_URL: str
    DB_ECHO: bool = False

    # ------------------------------------------------------------------ #
    # Response window
    # ------------------------------------------------------------------ #
    RESPONSE_WINDOW_SECONDS: int = 24 * 60 * 60
    EXPIRY_SWEEP_INTERVAL_SECONDS: float = 60.0

    # ------------------------------------------------------------------ #
    # Chat client
    # ------------------------------------------------------------------ #
    API_BASE_URL: str = "http://localhost:8000/api/v1"
    CHAT_POLL_INTERVAL_SECONDS: float = 3.0
    COUNTDOWN_TICK_SECONDS: float = 1.0
    CLIENT_TIMEOUT_SECONDS: float = 10.0
    CLIENT_RETRY_ATTEMPTS: int = 3
    CLOCK_SKEW_TOLERANCE_SECONDS: float = 5.0

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # ------------------------------------------------------------------ #
    # CORS
    # ------------------------------------------------------------------ #
    ALLOWED_ORIGINS: str = "*"

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @property
    def allowed_origins_list(self) -> list[str]:
        """Return ALLOWED_ORIGINS as a list split on commas."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @field_validator("RESPONSE_WINDOW_SECONDS")
    @classmethod
    def _window_must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Response window must be positive, got {v}")
        return v

    @field_validator(
        "CHAT_POLL_INTERVAL_SECONDS",
        "COUNTDOWN_TICK_SECONDS",
        "EXPIRY_SWEEP_INTERVAL_SECONDS",
    )
    @classmethod
    def _interval_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Interval must be positive, got {v}")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached, validated ``Settings`` instance.

    Using ``@lru_cache`` guarantees the .env file is read and validated
    exactly once per process lifetime.  Import this function anywhere you
    need access to configuration::

        from app.config import get_settings
        settings = get_settings()
    """
    return Settings()  # type: ignore[call-arg]
