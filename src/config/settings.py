# src/config/settings.py — v2
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for cache sizing, TTLs, maintenance cadence and
logging. Every field maps to an upper-case environment variable of the
same name (e.g. CACHE_MAX_SIZE).
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Cache ===
    cache_enabled: bool = True
    cache_backend: Literal["memory"] = "memory"
    cache_max_size: int = 1000
    cache_default_ttl_seconds: float = 3600.0
    cache_version: str = "1.0.0"
    cache_memory_threshold_bytes: int = 50 * 1024 * 1024
    cache_cleanup_interval_seconds: float = 300.0
    cache_enable_metrics: bool = True
    cache_enable_memory_monitoring: bool = True

    # === Maintenance ===
    maintenance_interval_seconds: float = 24 * 60 * 60.0
    maintenance_validate_consistency: bool = True
    frequent_access_threshold: int = 5
    frequent_access_limit: int = 20
    # Clamped to cache_max_size when hot programs are re-cached.
    hot_program_limit: int = 50

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("cache_max_size", "cache_memory_threshold_bytes")
    @classmethod
    def validate_positive_size(cls, v: int, info) -> int:  # noqa: N805
        if v <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return v

    @field_validator("cache_default_ttl_seconds", "maintenance_interval_seconds")
    @classmethod
    def validate_positive_duration(cls, v: float, info) -> float:  # noqa: N805
        if v <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return v

    @field_validator("cache_cleanup_interval_seconds")
    @classmethod
    def validate_cleanup_interval(cls, v: float) -> float:  # noqa: N805
        """0 disables the background sweep; negatives are rejected."""
        if v < 0:
            raise ValueError("cache_cleanup_interval_seconds must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.frequent_access_limit <= 0:
            errors.append("FREQUENT_ACCESS_LIMIT must be > 0")

        if self.hot_program_limit <= 0:
            errors.append("HOT_PROGRAM_LIMIT must be > 0")

        if self.frequent_access_threshold < 0:
            errors.append("FREQUENT_ACCESS_THRESHOLD must be >= 0")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or embedding).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
