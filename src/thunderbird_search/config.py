"""Configuration management for Thunderbird Search.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the TB_ prefix (e.g., TB_PG_DSN, TB_LOG_LEVEL).
    """

    model_config = SettingsConfigDict(
        env_prefix="TB_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Profile discovery
    profile_root: Path = Field(
        default=Path.home() / ".thunderbird",
        validation_alias=AliasChoices("profile_root", "TB_PROFILE_ROOT", "THUNDERBIRD_HOME"),
        description="Directory holding profiles.ini",
    )
    index_file_name: str = Field(
        default=".tb-index.json",
        description="Local index cache file name, relative to the profile directory",
    )

    # Message extraction limits
    max_message_bytes: int = Field(
        default=12 << 20,
        description="Maximum bytes read from a single message",
    )
    max_part_bytes: int = Field(
        default=2 << 20,
        description="Maximum decoded bytes kept from a single MIME part",
    )
    snippet_length: int = Field(
        default=160,
        description="Maximum snippet length in characters (including the ellipsis)",
    )

    # Scanning
    scan_warn_limit: int = Field(
        default=3,
        description="Number of per-folder message faults reported before going quiet",
    )
    default_limit: int = Field(
        default=25,
        description="Default number of search results (0 = unlimited)",
    )

    # Persistent store
    pg_dsn: str | None = Field(
        default=None,
        description="SQLAlchemy database URL of the persistent message store",
    )
    store_batch_size: int = Field(
        default=500,
        description="Rows written per upsert transaction",
    )
    store_refresh_interval: int = Field(
        default=300,
        description="Seconds after a sync during which folder fingerprints are not re-checked",
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
    max_retries: int = Field(
        default=3,
        description="Maximum number of retries when connecting to the store",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
