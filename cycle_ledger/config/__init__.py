"""Configuration package."""

from cycle_ledger.config.settings import (
    AppSettings,
    ObservationSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "ObservationSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
