# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Configuration management using Pydantic Settings."""

from beartype import beartype
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class Settings(BaseSettings):
    """Engine settings with immutable configuration."""

    model_config = SettingsConfigDict(
        env_prefix="EV_WARRANTY_",
        env_file=None,
        env_file_encoding="utf-8",
        frozen=True,  # Immutable settings
        validate_default=True,
        extra="forbid",
    )

    # Lifecycle limits
    max_cancel_requests: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Lifetime ceiling on cancellation requests per claim",
    )
    max_resubmit_count: int = Field(
        default=1,
        ge=0,
        le=10,
        description="Resubmissions allowed after an EVM rejection",
    )
    min_reported_failure_length: int = Field(
        default=10,
        ge=1,
        le=500,
        description="Minimum characters in the reported failure text",
    )

    # Technician capacity
    default_max_workload: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Maximum concurrent work assignments per technician",
    )

    # Storage
    lock_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=120.0,
        description="Seconds to wait for a write-intent lock before conflicting",
    )
    claim_number_prefix: str = Field(
        default="CLM",
        min_length=2,
        max_length=8,
        pattern=r"^[A-Z]+$",
        description="Prefix used when generating claim numbers",
    )

    # Observability
    slow_command_threshold_ms: int = Field(
        default=500,
        ge=1,
        le=60000,
        description="Commands slower than this are logged as warnings",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level name",
    )

    @field_validator("log_level")
    @classmethod
    @beartype
    def validate_log_level(cls, v: str) -> str:
        """Normalise and validate the log level name."""
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}")
        return level


_settings: Settings | None = None


@beartype
def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


@beartype
def clear_settings_cache() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
