"""
CourtListener Sync - Unified Configuration

CANONICAL ENVIRONMENT VARIABLE CONTRACT
=======================================

This module is the SINGLE SOURCE OF TRUTH for sync configuration.
The bulk import CLI, the sync managers and the rate limiter all read from it.

Required:
  SUPABASE_URL                  - Supabase project REST URL (https://xxx.supabase.co)
  SUPABASE_SERVICE_ROLE_KEY     - Service role JWT (server-side only)
  COURTLISTENER_API_KEY         - CourtListener API token

Optional:
  SUPABASE_DB_URL               - Postgres connection string (needed for RATE_LIMIT_BACKEND=postgres)
  COURTLISTENER_BASE_URL        - API root (default: v4 REST API)
  COURTLISTENER_HOURLY_LIMIT    - Published hourly quota (default: 5000)
  COURTLISTENER_BUFFER_LIMIT    - Effective quota used for accounting (default: 4500)
  RATE_LIMIT_WARNING_PERCENT    - Utilization that triggers warnings (default: 70)
  RATE_LIMIT_CRITICAL_PERCENT   - Utilization that pauses or aborts a run (default: 90)
  RATE_LIMIT_BACKEND            - memory | postgres (default: memory)
  SYNC_JURISDICTION             - Default jurisdiction filter (default: CA)
  SYNC_STALE_AFTER_DAYS         - Rows older than this are refreshed (default: 7)
  ENVIRONMENT                   - dev | staging | prod (default: dev)
  LOG_LEVEL                     - DEBUG | INFO | WARNING | ERROR (default: INFO)

Legacy aliases (accepted):
  NEXT_PUBLIC_SUPABASE_URL      - Use SUPABASE_URL
  COURTLISTENER_API_TOKEN       - Use COURTLISTENER_API_KEY

Usage:
------
    from src.core_config import get_settings

    settings = get_settings()
    print(settings.supabase_url)
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Literal

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_COURTLISTENER_BASE_URL = "https://www.courtlistener.com/api/rest/v4"

# Secrets are never echoed by diagnostics
_SECRET_FIELDS = {
    "SUPABASE_SERVICE_ROLE_KEY",
    "SUPABASE_DB_URL",
    "COURTLISTENER_API_KEY",
}


class Settings(BaseSettings):
    """
    Settings for the CourtListener sync tooling.

    Loads from environment variables with fallback to an env file.
    Set ENV_FILE to point to the correct file (defaults to .env.local).
    """

    model_config = SettingsConfigDict(
        env_file=os.environ.get("ENV_FILE", ".env.local"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # =========================================================================
    # SUPABASE
    # =========================================================================

    SUPABASE_URL: str = Field(
        ...,
        description="Supabase project REST URL",
        validation_alias=AliasChoices("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL"),
    )
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role JWT key")
    SUPABASE_DB_URL: str | None = Field(
        default=None,
        description="Postgres connection string (pooler recommended)",
    )

    # =========================================================================
    # COURTLISTENER
    # =========================================================================

    COURTLISTENER_API_KEY: str = Field(
        ...,
        description="CourtListener API token",
        validation_alias=AliasChoices("COURTLISTENER_API_KEY", "COURTLISTENER_API_TOKEN"),
    )
    COURTLISTENER_BASE_URL: str = Field(
        default=DEFAULT_COURTLISTENER_BASE_URL,
        description="CourtListener REST API root",
    )
    COURTLISTENER_HOURLY_LIMIT: int = Field(default=5000, gt=0)
    COURTLISTENER_BUFFER_LIMIT: int = Field(default=4500, gt=0)

    # =========================================================================
    # RATE LIMITING
    # =========================================================================

    RATE_LIMIT_WARNING_PERCENT: float = Field(default=70.0, ge=0, le=100)
    RATE_LIMIT_CRITICAL_PERCENT: float = Field(default=90.0, ge=0, le=100)
    RATE_LIMIT_BACKEND: Literal["memory", "postgres"] = Field(default="memory")

    # =========================================================================
    # SYNC DEFAULTS
    # =========================================================================

    SYNC_JURISDICTION: str = Field(default="CA")
    SYNC_STALE_AFTER_DAYS: int = Field(default=7, ge=0)

    # =========================================================================
    # ENVIRONMENT CONTROL
    # =========================================================================

    ENVIRONMENT: Literal["dev", "staging", "prod"] = Field(default="dev")
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    # =========================================================================
    # VALIDATION & NORMALIZATION
    # =========================================================================

    @model_validator(mode="before")
    @classmethod
    def _normalize_values(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Strip whitespace/quotes and normalize ENVIRONMENT and LOG_LEVEL."""
        if not isinstance(values, dict):
            return values

        for key, value in list(values.items()):
            if isinstance(value, str):
                cleaned = value.strip().strip('"').strip("'").strip()
                if key.upper() in _SECRET_FIELDS or key.upper().endswith("_URL"):
                    cleaned = cleaned.replace("\n", "").replace("\r", "").replace("\t", "")
                values[key] = cleaned

        for key in list(values):
            if key.upper() == "ENVIRONMENT":
                raw = str(values[key]).lower().strip()
                if raw == "production":
                    logger.warning("ENVIRONMENT='production' is deprecated; use 'prod'. Normalizing.")
                    raw = "prod"
                elif raw == "development":
                    logger.warning("ENVIRONMENT='development' is deprecated; use 'dev'. Normalizing.")
                    raw = "dev"
                elif raw not in ("dev", "staging", "prod"):
                    raise ValueError(
                        f"ENVIRONMENT='{raw}' is invalid. Must be one of: dev, staging, prod"
                    )
                values[key] = raw
            elif key.upper() == "LOG_LEVEL":
                values[key] = str(values[key]).upper()

        return values

    @model_validator(mode="after")
    def _check_thresholds(self) -> "Settings":
        if self.RATE_LIMIT_WARNING_PERCENT > self.RATE_LIMIT_CRITICAL_PERCENT:
            raise ValueError("RATE_LIMIT_WARNING_PERCENT must not exceed RATE_LIMIT_CRITICAL_PERCENT")
        if self.COURTLISTENER_BUFFER_LIMIT > self.COURTLISTENER_HOURLY_LIMIT:
            raise ValueError("COURTLISTENER_BUFFER_LIMIT must not exceed COURTLISTENER_HOURLY_LIMIT")
        return self

    # =========================================================================
    # PROPERTY ALIASES
    # =========================================================================

    @property
    def supabase_url(self) -> str:
        return self.SUPABASE_URL

    @property
    def supabase_service_role_key(self) -> str:
        return self.SUPABASE_SERVICE_ROLE_KEY

    @property
    def supabase_db_url(self) -> str | None:
        return self.SUPABASE_DB_URL

    @property
    def courtlistener_api_key(self) -> str:
        return self.COURTLISTENER_API_KEY

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "prod"


# =========================================================================
# SINGLETON & FACTORY
# =========================================================================


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()  # type: ignore[call-arg]


def reset_settings() -> None:
    """Clear the cached settings (for testing)."""
    get_settings.cache_clear()


# =========================================================================
# LOGGING CONFIGURATION
# =========================================================================


def configure_logging(settings: Settings | None = None) -> None:
    """Configure root logging from LOG_LEVEL with a concise format."""
    level_name = settings.LOG_LEVEL if settings is not None else os.getenv("LOG_LEVEL", "INFO")
    level = getattr(logging, level_name.upper(), logging.INFO)
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    root_logger = logging.getLogger()

    if root_logger.handlers:
        root_logger.setLevel(level)
        for handler in root_logger.handlers:
            handler.setLevel(level)
            handler.setFormatter(formatter)
    else:
        logging.basicConfig(level=level)
        for handler in logging.getLogger().handlers:
            handler.setFormatter(formatter)

    # Quiet noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =========================================================================
# DIAGNOSTIC HELPERS
# =========================================================================


def redacted_config(settings: Settings | None = None) -> dict[str, Any]:
    """
    Return the effective configuration with secrets redacted.

    Args:
        settings: Settings to describe (defaults to the cached settings)

    Returns:
        Dict of effective configuration values
    """
    if settings is None:
        settings = get_settings()

    config: dict[str, Any] = {}
    for field_name in type(settings).model_fields:
        value = getattr(settings, field_name, None)
        if field_name.upper() in _SECRET_FIELDS:
            config[field_name] = f"***SET*** (len={len(str(value))})" if value else None
        else:
            config[field_name] = value
    return config
