"""Configuration settings for Story Mirror."""

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class GitLabConfig(BaseModel):
    """Configuration for the GitLab REST transport.

    Controls pagination and the retry behavior applied to every request.
    """

    # Pagination
    page_size: int = Field(
        default=50,
        ge=1,
        le=100,
        description="Items requested per page",
    )
    page_limit: int = Field(
        default=5000,
        ge=1,
        description="Maximum number of pages fetched for one listing",
    )

    # Retries
    max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Attempts per request before giving up",
    )
    retry_delay_ms: int = Field(
        default=500,
        ge=0,
        description="Initial backoff delay, doubled after every failed attempt",
    )
    rate_limit_delay_s: float = Field(
        default=5.0,
        ge=0.0,
        description="Seconds to wait after a 429 response",
    )
    timeout_s: float = Field(
        default=30.0,
        gt=0.0,
        description="Per-request timeout in seconds",
    )


class SyncConfig(BaseModel):
    """Configuration for activity-log import runs."""

    commit_batch_size: int = Field(
        default=1,
        ge=1,
        le=100,
        description="Events to commit per batch (1 = commit after every event)",
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts for a failed event before it is marked permanent",
    )
    event_lookback_days: int = Field(
        default=1,
        ge=0,
        description="Days before the last imported event to start fetching from",
    )

    @property
    def event_lookback(self) -> timedelta:
        """Get the lookback window as a timedelta."""
        return timedelta(days=self.event_lookback_days)


class LoggingConfig(BaseModel):
    """Configuration for logging behavior.

    Controls file logging, rotation, and output format.
    """

    log_file: str | None = Field(
        default=None,
        description="Optional path for file logging (enables rotation)",
    )
    rotation: str = Field(
        default="10 MB",
        description="When to rotate log file (e.g., '10 MB', '1 day')",
    )
    retention: str = Field(
        default="7 days",
        description="How long to keep rotated logs",
    )
    serialize: bool = Field(
        default=False,
        description="If True, output JSON format to file",
    )


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # --------------------------------------------------------------------------
    # Database
    # --------------------------------------------------------------------------
    database_url: str = Field(
        default="sqlite+aiosqlite:///./story_mirror.db",
        description="Async database connection string",
    )

    # --------------------------------------------------------------------------
    # Application
    # --------------------------------------------------------------------------
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    default_language_code: str = Field(
        default="en",
        min_length=2,
        max_length=5,
        description="Language code assigned to imported stories",
    )
    site_address: str | None = Field(
        default=None,
        description="Public address of the site, prefixed to media URLs in exported issues",
    )

    # --------------------------------------------------------------------------
    # GitLab Transport
    # --------------------------------------------------------------------------
    gitlab: GitLabConfig = Field(
        default_factory=GitLabConfig,
        description="GitLab transport configuration",
    )

    # --------------------------------------------------------------------------
    # Sync Configuration
    # --------------------------------------------------------------------------
    sync: SyncConfig = Field(
        default_factory=SyncConfig,
        description="Activity-log import configuration",
    )

    # --------------------------------------------------------------------------
    # Logging Configuration
    # --------------------------------------------------------------------------
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration (file output, rotation)",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
