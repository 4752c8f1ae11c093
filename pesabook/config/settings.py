"""
Configuration Management for pesabook

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All tunable thresholds live here.
Matching windows, tolerances and locale choices are data, so callers can
tighten them without touching the parsing or reconciliation code.
"""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ParserSettings(BaseSettings):
    """Message and statement parsing configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PESABOOK_PARSER_",
        extra="ignore"
    )

    day_first: bool = Field(
        default=True,
        description="Read d/m/y dates (Kenyan locale). False reads m/d/y."
    )
    currency_markers: str = Field(
        default="Ksh,KES",
        description="Comma-separated currency prefixes that mark a money token"
    )
    max_message_length: int = Field(
        default=2000,
        ge=50,
        description="Longer inputs are rejected as unrecognized"
    )

    @field_validator('currency_markers')
    @classmethod
    def validate_currency_markers(cls, v: str) -> str:
        """At least one marker is required to find amounts."""
        if not [m for m in v.split(",") if m.strip()]:
            raise ValueError("At least one currency marker is required")
        return v

    @property
    def currency_markers_list(self) -> list[str]:
        """Get currency markers as a list."""
        return [m.strip() for m in self.currency_markers.split(",") if m.strip()]


class ReconcileSettings(BaseSettings):
    """Duplicate detection and category inference configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PESABOOK_RECONCILE_",
        extra="ignore"
    )

    amount_tolerance: Decimal = Field(
        default=Decimal("1"),
        gt=0,
        description="Fuzzy tier: amounts must differ by strictly less than this"
    )
    date_window_days: int = Field(
        default=2,
        ge=0,
        le=31,
        description="Fuzzy tier: timestamps may differ by at most this many days"
    )
    min_name_length: int = Field(
        default=3,
        ge=0,
        description="Names shorter than this only match exactly, never by containment"
    )
    keyword_fallback: bool = Field(
        default=False,
        description="Suggest categories from keywords when history has none"
    )


class RecurringSettings(BaseSettings):
    """Recurring definition matching configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PESABOOK_RECURRING_",
        extra="ignore"
    )

    amount_tolerance_pct: Decimal = Field(
        default=Decimal("5"),
        ge=0,
        le=100,
        description="Fallback tier: allowed amount drift as a percentage"
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
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured logs"
    )

    # Batch parsing
    parse_workers: int = Field(
        default=1,
        ge=1,
        le=32,
        description="Worker threads for batch message parsing"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"Unsupported log level: {v}. Allowed: {allowed}")
        return v.upper()


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
    def parser(self) -> ParserSettings:
        return ParserSettings()

    @property
    def reconcile(self) -> ReconcileSettings:
        return ReconcileSettings()

    @property
    def recurring(self) -> RecurringSettings:
        return RecurringSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings groups.

    Returns a dict of {group_name: is_valid}, with a `<group>_error`
    entry describing each failure. Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for group in ("parser", "reconcile", "recurring", "app"):
        try:
            getattr(settings, group)
            results[group] = True
        except ValueError as e:
            results[group] = False
            results[f"{group}_error"] = str(e)

    return results
