"""
Configuration settings for the vignette engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_HOME = Path.home() / ".vignettes"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Storage
    # ========================================
    database_url: str = Field(
        default=f"sqlite:///{DEFAULT_HOME / 'state.db'}",
        description="SQLAlchemy URL for sessions and progress",
    )
    content_dir: Path = Field(
        default=DEFAULT_HOME / "content",
        description="Directory of vignette JSON files (read-only)",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum loguru level for the CLI sink",
    )

    # ========================================
    # Progress
    # ========================================
    completion_policy: Literal["outcome_only", "any_ended"] = Field(
        default="outcome_only",
        description="'outcome_only' folds only sessions that reached an outcome node; "
        "'any_ended' folds every ended session",
    )

    # ========================================
    # Persistence Retry
    # ========================================
    persistence_max_retries: int = Field(
        default=3,
        ge=0,
        description="Retries after the first failed gateway call",
    )
    persistence_base_delay_ms: int = Field(
        default=500,
        ge=0,
        description="Delay before the first retry",
    )
    persistence_max_delay_ms: int = Field(
        default=5000,
        ge=0,
        description="Upper bound for a single backoff delay",
    )
    persistence_backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Exponential backoff factor",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper() if isinstance(value, str) else value

    @field_validator("content_dir", mode="after")
    @classmethod
    def _expand_content_dir(cls, value: Path) -> Path:
        return value.expanduser()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
