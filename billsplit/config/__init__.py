"""Configuration package."""

from billsplit.config.settings import (
    AppSettings,
    IdentitySettings,
    LedgerSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "IdentitySettings",
    "LedgerSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
