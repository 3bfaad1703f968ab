"""
Configuration Management for Ledgerbook

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FirestoreSettings(BaseSettings):
    """Google Cloud Firestore document store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FIRESTORE_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    project_id: str = Field(
        ...,
        description="Google Cloud project that owns the database"
    )
    database: str = Field(
        default="(default)",
        description="Firestore database ID"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class LedgerSettings(BaseSettings):
    """Ledger engine and budget reconciliation behaviour."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    warning_threshold: float = Field(
        default=0.8,
        gt=0.0,
        le=1.0,
        description="Share of an allocation that flips its status to WARNING"
    )
    check_funds_on_update: bool = Field(
        default=True,
        description="Apply the creation funds check when an update moves money"
    )
    reconciliation_strategy: Literal["delta", "recompute"] = Field(
        default="delta",
        description=(
            "delta: add the signed amount to matching allocations; "
            "recompute: re-derive spent from the transaction log"
        )
    )
    reconcile_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for the idempotent recompute routine"
    )

    # Validation thresholds
    max_transaction_amount: float = Field(
        default=10_000_000.0,
        description="Largest amount accepted without a warning"
    )
    future_date_tolerance_days: int = Field(
        default=7,
        description="How many days in the future a transaction date can be"
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
    storage_backend: Literal["memory", "firestore"] = Field(
        default="memory",
        description="Document store used by create_app_components()"
    )
    log_level: str = Field(
        default="INFO",
        description="Level for the stdlib logger behind structlog"
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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def firestore(self) -> FirestoreSettings:
        return FirestoreSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

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


def validate_all_settings(
    sections: Optional[list[str]] = None,
) -> dict[str, bool]:
    """
    Validate settings sections are properly configured.

    Returns a dict of {section_name: is_valid} plus a
    {section_name}_error entry for each failing section.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in sections or ["firestore", "ledger", "app"]:
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
