"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup, so a malformed value fails fast with a clear error message.

Usage:
    from milestone_escrow.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the milestone escrow service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://escrow:escrow_dev"
        "@localhost:5432/milestone_escrow"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours

    # --- Oracles ---
    github_api_url: str = "https://api.github.com"
    github_token: str = ""
    github_user_agent: str = "milestone-escrow-oracle"
    figma_api_url: str = "https://api.figma.com"
    figma_token: str = ""
    oracle_timeout_seconds: float = 10.0
    oracle_max_attempts: int = 3
    oracle_backoff_min_seconds: float = 1.0
    oracle_backoff_max_seconds: float = 8.0

    # --- Ledger ---
    ledger_backend: Literal["simulated"] = "simulated"
    ledger_asset_decimals: int = 18
    ledger_confirmation_attempts: int = 5
    ledger_confirmation_backoff_seconds: float = 1.0
    ledger_confirmation_backoff_max_seconds: float = 15.0

    # --- Activity poller ---
    poller_enabled: bool = False
    poller_interval_seconds: int = 300

    # --- MCP ---
    mcp_transport: Literal["sse", "streamable-http"] = "sse"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
