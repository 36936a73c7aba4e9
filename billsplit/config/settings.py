"""
Configuration Management for billsplit

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Tolerances used by the balance engine live next to storage and identity
settings so a reader can see every tunable in one place.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Ledger file and balance engine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    file_path: Optional[str] = Field(
        default=None,
        description="Path to the ledger file (.pcsv or .pson)"
    )
    default_encoding: str = Field(
        default="pcsv",
        pattern="^(pcsv|pson)$",
        description="Encoding used when the file suffix does not decide"
    )
    format_version: str = Field(
        default="1.0",
        description="Version written into the document metadata block"
    )

    # Tolerances
    settlement_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        gt=0,
        description="Balances within this distance of zero count as settled"
    )
    delta_tolerance: Decimal = Field(
        default=Decimal("0.001"),
        gt=0,
        description="Incremental balance changes smaller than this are skipped"
    )

    @field_validator('file_path')
    @classmethod
    def validate_file_path(cls, v: Optional[str]) -> Optional[str]:
        """Warn if the ledger directory doesn't exist (the file itself may not yet)."""
        if v and not Path(v).parent.exists():
            import warnings
            warnings.warn(
                f"Ledger directory not found for {v}. "
                "Make sure it exists before saving the ledger."
            )
        return v


class IdentitySettings(BaseSettings):
    """Identity directory lookup configuration."""

    model_config = SettingsConfigDict(
        env_prefix="IDENTITY_",
        extra="ignore"
    )

    base_url: Optional[str] = Field(
        default=None,
        description="Directory base URL, used to build avatar references"
    )
    default_user_name: Optional[str] = Field(
        default=None,
        description="Fallback display name when the directory can't say who we are"
    )
    default_user_id: Optional[str] = Field(
        default=None,
        description="Fallback external identity for the current user"
    )
    search_min_length: int = Field(
        default=2,
        ge=1,
        description="Shortest query sent to the directory"
    )
    search_limit: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Default number of search results"
    )
    lookup_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per directory call before giving up"
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

    # Validation thresholds
    max_bill_amount: Decimal = Field(
        default=Decimal("1000000"),
        gt=0,
        description="Maximum reasonable bill amount (for sanity checking)"
    )
    future_date_tolerance_days: int = Field(
        default=7,
        ge=0,
        description="How many days in the future a bill date can be"
    )


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
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def identity(self) -> IdentitySettings:
        return IdentitySettings()

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
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus a
    "<name>_error" entry for each section that failed to load.
    """
    results = {}
    settings = get_settings()

    for name in ("ledger", "identity", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
