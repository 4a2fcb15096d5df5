"""Client configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (release builds inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_forum_settings() -> "ForumSettings":
    """Build forum settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return ForumSettings()  # type: ignore[call-arg]


class ForumSettings(BaseSettings):
    """Remote forum backend configuration."""

    base_url: str = Field(
        ...,
        description="Forum base URL without trailing slash (e.g., https://forum.example.com)",
    )
    timeout_seconds: float = Field(
        10.0,
        description="Per-call network timeout in seconds",
        gt=0,
    )
    https_only: bool = Field(
        False,
        description="Reject non-HTTPS base URLs",
    )
    user_agent: str = Field(
        "Feedcore/1.0",
        description="User-Agent header sent with every request",
    )

    model_config = SettingsConfigDict(
        env_prefix="FORUM_",
        case_sensitive=False,
    )


class RequestSettings(BaseSettings):
    """Request engine tuning: cache, retries and rate limiting."""

    cache_ttl_seconds: int = Field(
        300,
        description="Freshness window for cached GET responses",
        ge=1,
    )
    cache_max_entries: int | None = Field(
        1024,
        description="Maximum number of cached responses (None for unlimited)",
    )
    max_retries: int = Field(
        3,
        description="Default retry budget for a single logical request",
        ge=0,
    )
    retry_base_delay_seconds: float = Field(
        1.0,
        description="Base delay for linear retry backoff",
        ge=0,
    )
    rate_limit_enabled: bool = Field(
        True,
        description="Enforce the client-side request budget",
    )
    rate_limit_per_minute: int = Field(
        60,
        description="Maximum requests admitted per one-minute window",
        ge=1,
    )
    rate_limit_per_hour: int = Field(
        1000,
        description="Maximum requests admitted per one-hour window",
        ge=1,
    )
    rate_limit_max_wait_seconds: float = Field(
        5.0,
        description="Longest a call may wait for rate limit capacity before failing",
        ge=0,
    )
    auth_header_retry_delay_seconds: float = Field(
        0.2,
        description="Delay before re-reading credentials for a write without a key",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="REQUEST_",
        case_sensitive=False,
    )


class AuthSettings(BaseSettings):
    """Auth synchronizer and secure storage configuration."""

    storage_backend: Literal["keyring", "memory"] = Field(
        "keyring",
        description="Secure storage backend for the credential record",
    )
    storage_service: str = Field(
        "feedcore",
        description="Service name used to namespace the secure storage record",
    )
    storage_key: str = Field(
        "auth-token-v1",
        description="Fixed key of the secure storage record",
    )
    reload_debounce_ms: int = Field(
        50,
        description="Window in which bursts of auth events collapse into one reload",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field("json", description="Log line format")
    output: Literal["stdout", "file"] = Field("stdout", description="Log destination")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        0,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(3, description="Rotated files to keep", ge=0)

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if required settings are missing.
    """

    app_env: str = APP_ENV
    forum: ForumSettings = Field(default_factory=_build_forum_settings)
    request: RequestSettings = Field(default_factory=RequestSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
