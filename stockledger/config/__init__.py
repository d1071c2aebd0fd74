"""Configuration package."""

from stockledger.config.settings import (
    GoogleSheetsSettings,
    LedgerSettings,
    Settings,
    StorageBackend,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "GoogleSheetsSettings",
    "LedgerSettings",
    "Settings",
    "StorageBackend",
    "get_settings",
    "validate_all_settings",
]
