"""Centralized, typed configuration using pydantic-settings.

Provides a single ``Settings`` class backed by ``.env`` file and environment
variables, and a cached ``get_settings()`` accessor.

IMPORTANT: This module has ZERO imports from the ``helpdesk`` package to
prevent circular imports.  Only stdlib, pydantic, pydantic_settings, and
structlog are used.
"""

from __future__ import annotations

import sys
from functools import lru_cache
from pathlib import Path

import structlog
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()


class Settings(BaseSettings):
    """Application settings loaded from environment variables and ``.env`` file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- General ---------------------------------------------------------------
    production: bool = False
    log_level: str | None = None  # overrides INFO (production) / DEBUG

    # -- Conversation store ----------------------------------------------------
    conversation_db_path: Path = Path("data/conversations.db")

    # -- Resolution ------------------------------------------------------------
    resolution_timeout_seconds: float = Field(default=10.0, gt=0)
    resolution_max_attempts: int = Field(default=3, ge=1)

    # Exchange Thread-Index: 22 bytes identify the conversation root, each
    # reply appends a 5-byte block.
    thread_index_min_prefix_bytes: int = Field(default=22, ge=6)

    # -- Subject fallback (off unless explicitly enabled) ----------------------
    subject_fallback_enabled: bool = False
    subject_window_days: int = Field(default=30, ge=1)


@lru_cache
def get_settings() -> Settings:
    """Return a cached ``Settings`` instance.

    Call ``get_settings.cache_clear()`` in tests to reset.

    Returns:
        The application ``Settings``.
    """
    try:
        return Settings()
    except ValidationError as exc:
        logger.error("settings_validation_failed", errors=exc.errors())
        sys.exit(1)
