"""Configuration package."""

from daybook.config.settings import (
    GoogleDriveSettings,
    LedgerSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "GoogleDriveSettings",
    "LedgerSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
