"""
Configuration module for the keystream service.

This module uses Pydantic Settings to load and validate environment variables
for session lifetime, anti-abuse limits, message retention, relay typing
playback, and CORS settings.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every value has a working default so the service starts with no
    configuration at all.
    """

    # =========================================================================
    # Server Configuration
    # =========================================================================

    HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the server",
    )

    PORT: int = Field(
        default=8080,
        description="Port to bind the server",
        ge=1,
        le=65535,
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    DEFAULT_ROOM: str = Field(
        default="global",
        description="Room used when a connection does not name one",
        min_length=1,
    )

    # =========================================================================
    # Session Registry
    # =========================================================================

    SESSION_TIMEOUT_SECONDS: int = Field(
        default=30 * 60,
        description="Idle time after which a session and its usernames are released",
        ge=1,
    )

    SESSION_SWEEP_SECONDS: float = Field(
        default=60.0,
        description="Interval of the expired-session sweep",
        gt=0,
    )

    # =========================================================================
    # Rate / Content Guard
    # =========================================================================

    RATE_MIN_INTERVAL_MS: int = Field(
        default=50,
        description="Minimum gap between accepted frames of one connection",
        ge=0,
    )

    RATE_WINDOW_SECONDS: float = Field(
        default=60.0,
        description="Length of the per-connection rate window",
        gt=0,
    )

    RATE_MAX_MESSAGES: int = Field(
        default=50,
        description="Frames allowed per connection within one rate window",
        ge=1,
    )

    CONTENT_MAX_LENGTH: int = Field(
        default=200,
        description="Longest accepted content in characters",
        ge=1,
    )

    CONTENT_MAX_REPEAT: int = Field(
        default=10,
        description="Longest accepted run of one repeated character",
        ge=1,
    )

    CONTENT_MAX_SYMBOL_RATIO: float = Field(
        default=0.5,
        description="Highest accepted share of non-alphanumeric, non-space characters",
        ge=0.0,
        le=1.0,
    )

    OUTBOUND_QUEUE_SIZE: int = Field(
        default=256,
        description="Pending outbound frames per connection before it is pruned as too slow",
        ge=1,
    )

    # =========================================================================
    # Message Store
    # =========================================================================

    MESSAGE_TTL_MINUTES: int = Field(
        default=30,
        description="Retention window for completed messages",
        ge=1,
    )

    MESSAGE_SWEEP_SECONDS: float = Field(
        default=5 * 60.0,
        description="Interval of the message retention sweep",
        gt=0,
    )

    HISTORY_LIMIT: int = Field(
        default=100,
        description="Default number of messages returned by the history endpoint",
        ge=1,
        le=500,
    )

    # =========================================================================
    # Relay Typing
    # =========================================================================

    RELAY_SHARED_SECRET: Optional[str] = Field(
        None,
        description="Shared secret required in X-Relay-Secret (leave empty to accept any caller)",
    )

    RELAY_DEFAULT_ROOM: str = Field(
        default="global",
        description="Room used for ingested items that do not name one",
        min_length=1,
    )

    RELAY_DEFAULT_USERNAME: str = Field(
        default="relay",
        description="Username shown for ingested items without an author",
        min_length=1,
    )

    RELAY_TICK_MS: int = Field(
        default=12,
        description="Period of the relay tick loop",
        ge=1,
    )

    RELAY_MAX_FRAMES_PER_TICK: int = Field(
        default=64,
        description="Frames emitted across all jobs in one tick",
        ge=1,
    )

    RELAY_MAX_FRAMES_PER_JOB: int = Field(
        default=4,
        description="Frames one job may emit in one tick",
        ge=1,
    )

    RELAY_DEDUP_CAPACITY: int = Field(
        default=5000,
        description="External items remembered for duplicate suppression",
        ge=1,
    )

    RELAY_MAX_CONTENT_LENGTH: int = Field(
        default=200,
        description="Longest relayed content before truncation",
        ge=4,
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []

        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    @property
    def relay_tick_seconds(self) -> float:
        return self.RELAY_TICK_MS / 1000.0

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """
        Validate LOG_LEVEL is a standard logging level name.

        Raises:
            ValueError: If the level is unknown
        """
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        level = v.strip().upper()

        if level not in allowed_levels:
            raise ValueError(
                f"LOG_LEVEL must be one of {allowed_levels}, got: {v}"
            )

        return level

    @field_validator("RELAY_SHARED_SECRET")
    @classmethod
    def blank_secret_is_unset(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.
    """
    return Settings()
