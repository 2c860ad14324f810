"""
Configuration Management for Cycle Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

All configuration is centralized here so the storage location, the
observation grace period and logging can be changed without touching code.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """SQLite record store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CYCLE_LEDGER_DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    path: Path = Field(
        default=Path("data") / "cycle_ledger.db",
        description="Path to the SQLite database file"
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="How long a connection waits on a locked database"
    )
    write_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for a write that hits a locked database"
    )

    @field_validator('path')
    @classmethod
    def validate_path(cls, v: Path) -> Path:
        """Reject a directory where a database file is expected."""
        if v.exists() and v.is_dir():
            raise ValueError(f"Database path is a directory: {v}")
        return v


class ObservationSettings(BaseSettings):
    """Shared observation stream configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CYCLE_LEDGER_OBSERVE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    grace_period_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=300.0,
        description="How long a stream keeps running after its last subscriber leaves"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured logs"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        level = v.strip().upper()
        if level not in allowed:
            raise ValueError(f"Unsupported log level: {v}. Allowed: {sorted(allowed)}")
        return level


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def observation(self) -> ObservationSettings:
        return ObservationSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("storage", "observation", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
