"""
Configuration settings for the SCORM sequencing & navigation engine.

Uses Pydantic Settings for environment variable management with .env file support.
All variables are read with the SN_ prefix (e.g. SN_MAX_ACTIVITY_DEPTH=12).
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Activity Tree
    # ========================================
    max_activity_depth: int = Field(
        default=10,
        ge=1,
        description="Deepest allowed activity (root is depth 0)",
    )

    # ========================================
    # Sequencing
    # ========================================
    enable_rollup_processing: bool = Field(
        default=True,
        description="Roll status up the tree when attempts end or progress changes",
    )
    enable_global_objectives: bool = Field(
        default=True,
        description="Honour objective read/write maps to shared global objectives",
    )
    default_objective_weight: float = Field(
        default=1.0,
        ge=0.0,
        le=1.0,
        description="Measure weight used when an activity declares none",
    )

    # ========================================
    # Snapshot polling (UI status cache)
    # ========================================
    snapshot_poll_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Interval between sequencing status snapshots",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: str = Field(
        default="INFO",
        description="Log level for the CLI sink (DEBUG, INFO, WARNING, ERROR)",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
