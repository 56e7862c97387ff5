"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

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

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ first
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_log_settings() -> "LogSettings":
    return LogSettings()


def _build_admission_settings() -> "AdmissionSettings":
    return AdmissionSettings()


def _build_app_settings() -> "AppSettings":
    return AppSettings()


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field(
        "INFO",
        description="Root log level (DEBUG, INFO, WARNING, ERROR)",
    )
    format: str = Field(
        "json",
        description="Log format: 'json' for structured logs, 'plain' for human-readable lines",
    )
    output: str = Field(
        "stdout",
        description="Log destination: 'stdout' or 'file'",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output is 'file'",
    )
    max_bytes: int = Field(
        0,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(
        5,
        description="Number of rotated log files to keep",
        ge=0,
    )
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class AdmissionSettings(BaseSettings):
    """Adaptive admission gate configuration.

    Per-category quotas live in ``app.core.policies``; these settings only
    cover process-wide behaviour of the gate and its background reaper.
    """

    enabled: bool = Field(
        True,
        description="Enable request admission control (quota + behaviour analysis)",
    )
    include_headers: bool = Field(
        True,
        description="Emit X-RateLimit-* headers on admitted requests",
    )
    throttle_threshold: float = Field(
        50.0,
        description="Suspicion score above which admitted requests are artificially delayed",
        ge=0,
    )
    max_throttle_delay_ms: int = Field(
        2000,
        description="Upper bound for the artificial delay applied to suspicious requests",
        ge=0,
    )
    reaper_interval_seconds: float = Field(
        300.0,
        description="Interval between sweeps of idle quota/behaviour records",
        gt=0,
    )
    idle_ttl_seconds: float = Field(
        1800.0,
        description="Idle time after which quota/behaviour records are evicted",
        gt=0,
    )
    lock_stripes: int = Field(
        64,
        description="Number of lock stripes guarding per-key read-modify-write sequences",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="ADMISSION_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    admin_api_key_required: bool = Field(
        True,
        description="Whether the operator endpoints require an admin key",
    )
    admin_api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid operator keys (X-Admin-Key header)",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)
    admission: AdmissionSettings = Field(default_factory=_build_admission_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


settings = Settings()
