"""Configuration package."""

from pesabook.config.settings import (
    AppSettings,
    ParserSettings,
    ReconcileSettings,
    RecurringSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "ParserSettings",
    "ReconcileSettings",
    "RecurringSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
