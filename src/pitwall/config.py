"""Runtime configuration loaded from the environment or a .env file."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings with safe defaults.

    Every field can be overridden with a ``PITWALL_`` prefixed environment
    variable, e.g. ``PITWALL_POLL_INTERVAL=10``.
    """

    model_config = SettingsConfigDict(
        env_prefix="PITWALL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Provider A (RedMist)
    redmist_api_url: str = "https://api.redmist.racing/status"
    redmist_hub_url: str = "wss://api.redmist.racing/status/event-status"
    auth_url: str = (
        "https://auth.redmist.racing/realms/redmist/protocol/openid-connect/token"
    )
    client_id: str = ""
    client_secret: str = ""

    # Provider B (Race-Monitor)
    racemonitor_api_url: str = "https://api.race-monitor.com/v2"
    racemonitor_token: str = ""

    # HTTP
    timeout: float = Field(default=30.0, description="HTTP request timeout in seconds")

    # Credentials
    token_safety_margin: float = Field(
        default=30.0, description="Seconds before expiry a token stops being served"
    )
    token_check_interval: float = Field(
        default=30.0, description="Seconds between background expiry checks"
    )
    token_refresh_window: float = Field(
        default=60.0, description="Refresh proactively when expiry is this close"
    )

    # Live channel
    reconnect_max_attempts: int = Field(default=10, ge=1)

    # Polling fallback
    poll_interval: float = Field(default=30.0, description="Seconds between polls")
    rate_limit_backoff_polls: int = Field(
        default=2, description="Polls skipped after a rate-limit response"
    )

    # Storage and logs
    store_path: Path = Path("pitwall_store.json")
    log_dir: Path = Path("logs")


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
