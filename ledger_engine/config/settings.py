"""
Configuration Management for Ledger Engine

Uses pydantic-settings for type-safe configuration from environment variables.

All configuration is centralized here, and every setting is validated
when it is first read.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """Persistence backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_STORAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    backend: Literal["memory", "sql"] = Field(
        default="memory",
        description="Which storage backend to use"
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./ledger.db",
        description="SQLAlchemy async database URL (sql backend only)"
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL statements to the log"
    )

    @field_validator('database_url')
    @classmethod
    def validate_async_driver(cls, v: str) -> str:
        """The sql backend runs on an async engine, so the URL needs an async driver."""
        scheme = v.split("://", 1)[0]
        if "+" not in scheme:
            raise ValueError(
                f"database_url must name an async driver (e.g. sqlite+aiosqlite), got '{scheme}'"
            )
        return v


class LedgerSettings(BaseSettings):
    """
    Main ledger settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Display
    currency_symbol: str = Field(
        default="₹",
        max_length=5,
        description="Symbol used when rendering amounts for display"
    )

    # Validation
    future_date_tolerance_days: int = Field(
        default=0,
        ge=0,
        le=30,
        description="How many days past today a transaction date may be"
    )

    # Read-side checks
    verify_on_read: bool = Field(
        default=True,
        description="Check stored running balances against a left fold when building a ledger"
    )

    # Mutation retries
    mutation_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for a mutation that fails with a storage fault"
    )
    retry_backoff_max_seconds: float = Field(
        default=2.0,
        ge=0.0,
        le=60.0,
        description="Upper bound of the exponential backoff between attempts"
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
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()


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

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name}_error entries for the ones that failed.
    """
    results = {}

    settings = get_settings()

    try:
        _ = settings.storage
        results["storage"] = True
    except ValueError as e:
        results["storage"] = False
        results["storage_error"] = str(e)

    try:
        _ = settings.ledger
        results["ledger"] = True
    except ValueError as e:
        results["ledger"] = False
        results["ledger_error"] = str(e)

    return results
