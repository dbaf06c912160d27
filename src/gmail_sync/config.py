"""Configuration management for the Gmail sync engine.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class QuotaCosts(BaseModel):
    """Gmail API quota units charged per call, by operation kind.

    These mirror Google's published per-method costs and can be overridden
    with nested env vars, e.g. GMAIL_SYNC_QUOTA_COSTS__BATCH_MODIFY=50.
    """

    list: float = 5
    get: float = 5
    modify: float = 5
    batch_modify: float = 50
    label: float = 1
    history: float = 2
    profile: float = 1
    trash: float = 5


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the GMAIL_SYNC_ prefix (e.g., GMAIL_SYNC_DATABASE_PATH).
    """

    model_config = SettingsConfigDict(
        env_prefix="GMAIL_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Gmail / OAuth Configuration
    gmail_credentials_path: Path = Field(
        default=Path("credentials.json"),
        description="Path to Gmail API OAuth client secrets file",
    )
    gmail_token_path: Path = Field(
        default=Path("token.json"),
        description="Path to the authorized user token file",
    )
    gmail_scope: str = Field(
        default="https://www.googleapis.com/auth/gmail.modify",
        description=(
            "OAuth scope used for Gmail access. gmail.modify is needed for "
            "read-state changes, archive and trash."
        ),
    )
    gmail_api_base_url: str = Field(
        default="https://gmail.googleapis.com/gmail/v1/users",
        description="Base URL of the Gmail REST API (without the user id)",
    )
    gmail_user_id: str = Field(
        default="me",
        description="Mailbox owner; 'me' means the authenticated user",
    )
    http_timeout_seconds: float = Field(
        default=60.0,
        description="Timeout for a single Gmail HTTP request in seconds",
    )

    # Local store
    database_path: Path = Field(
        default=Path("gmail_sync.sqlite3"),
        description="Path to the local SQLite mail cache",
    )

    # Client-side quota pacing
    quota_capacity: float = Field(
        default=250.0,
        description="Token bucket capacity in quota units (Gmail per-user per-second limit)",
    )
    quota_refill_rate: float = Field(
        default=250.0,
        description="Quota units refilled per second",
    )
    quota_costs: QuotaCosts = Field(
        default_factory=QuotaCosts,
        description="Quota units charged per operation kind",
    )

    # Per-request retry
    max_retries: int = Field(
        default=5,
        description="Retries for 429/500/503 responses before giving up on a call",
    )
    retry_base_delay_seconds: float = Field(
        default=2.0,
        description="Base delay for exponential backoff between request retries",
    )

    # Batch fan-out
    message_batch_concurrency: int = Field(
        default=40,
        description="Concurrent message fetches per chunk (40 x 5 units = 200 units)",
    )
    message_batch_delay_seconds: float = Field(default=0.1)
    attachment_batch_concurrency: int = Field(default=20)
    attachment_batch_delay_seconds: float = Field(default=0.1)
    label_batch_concurrency: int = Field(default=50)
    label_batch_delay_seconds: float = Field(default=0.2)
    batch_modify_max_ids: int = Field(
        default=1000,
        description="Maximum ids accepted by a single batchModify call",
    )
    batch_modify_delay_seconds: float = Field(default=0.2)

    # Full sync
    full_sync_page_size: int = Field(
        default=50,
        description="Message references requested per list page",
    )
    fetch_batch_size: int = Field(
        default=25,
        description="Message ids handed to a single batch fetch",
    )
    flush_every_pages: int = Field(
        default=5,
        description="Sender statistics are refreshed every N full-sync pages",
    )
    pages_per_session: int = Field(
        default=50,
        description="Maximum list pages processed by one full-sync invocation",
    )
    max_fetched: int = Field(
        default=10_000,
        description="Stop a full-sync invocation once this many messages were fetched",
    )

    # Continuous sync
    max_sessions: int = Field(
        default=100,
        description="Maximum sync sessions run by the continuous driver",
    )
    max_consecutive_errors: int = Field(
        default=5,
        description="Consecutive failed sessions before the driver pauses",
    )
    session_pause_seconds: float = Field(
        default=2.0,
        description="Pause between successful continuous sync sessions",
    )
    error_wait_seconds: float = Field(
        default=30.0,
        description="Wait after a non rate-limit session failure",
    )
    rate_limit_backoff_cap_minutes: float = Field(
        default=16.0,
        description="Upper bound for the session-level rate limit backoff",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
