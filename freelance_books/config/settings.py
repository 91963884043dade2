"""
Configuration Management for Freelance Books

Every setting is read from the environment (or .env) by pydantic-settings.

DESIGN DECISION: One module holds every knob the engine has: the
reconciliation threshold, depreciation limits, the storage backend and
the log output. A broken value fails when settings load, not mid-run.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from freelance_books.models.expense import MAX_DEPRECIATION_YEARS


class GoogleSheetsSettings(BaseSettings):
    """Where the Google Sheets backend keeps its worksheets."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Worksheet names within the spreadsheet
    expenses_sheet_name: str = Field(
        default="Expenses",
        description="Worksheet holding expenses, templates and occurrences"
    )
    schedules_sheet_name: str = Field(
        default="DepreciationSchedule",
        description="Worksheet holding depreciation schedule entries"
    )
    invoices_sheet_name: str = Field(
        default="Invoices",
        description="Worksheet holding invoices (read-only for the engine)"
    )
    payments_sheet_name: str = Field(
        default="Payments",
        description="Worksheet holding payments (read-only for the engine)"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Worksheet holding audit events"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Credentials may be mounted after startup, so a missing file only warns."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Service account file {v} does not exist yet; "
                "the Google Sheets backend will fail to connect without it."
            )
        return v


class EngineSettings(BaseSettings):
    """
    Main engine settings.

    Loads configuration from BOOKS_* environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="BOOKS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Deployment name, e.g. development or production"
    )

    # Billing reconciliation
    billing_threshold: Decimal = Field(
        default=Decimal("1.50"),
        ge=0,
        description="Tolerance for invoice balance before it counts as under/overbilled"
    )
    default_currency: str = Field(
        default="EUR",
        min_length=3,
        max_length=3,
        description="Currency used when a record carries none"
    )

    # Depreciation (AfA) limits
    max_depreciation_years: int = Field(
        default=MAX_DEPRECIATION_YEARS,
        ge=1,
        le=MAX_DEPRECIATION_YEARS,
        description="Longest useful life accepted for partial depreciation"
    )

    # Recurring expenses
    auto_generated_suffix: str = Field(
        default=" (Auto-generated)",
        description="Suffix appended to the description of generated occurrences"
    )

    # Storage
    storage_backend: Literal["memory", "google_sheets"] = Field(
        default="memory",
        description="Which record store backend to use"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level"
    )
    log_format: Literal["json", "console"] = Field(
        default="json",
        description="Log output format"
    )


class Settings(BaseSettings):
    """
    Entry point for all settings groups.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Groups load on access, so the Sheets settings are only needed with that backend

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def engine(self) -> EngineSettings:
        return EngineSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Process-wide settings.

    Cached; tests call get_settings.cache_clear() after changing the environment.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Startup check of every settings group.

    Maps each group name to whether it loaded, plus "<group>_error" messages.
    Google Sheets settings are only required when that backend is selected.
    """
    results = {}

    settings = get_settings()

    try:
        engine = settings.engine
        results["engine"] = True
    except Exception as e:
        results["engine"] = False
        results["engine_error"] = str(e)
        return results

    if engine.storage_backend == "google_sheets":
        try:
            _ = settings.google_sheets
            results["google_sheets"] = True
        except Exception as e:
            results["google_sheets"] = False
            results["google_sheets_error"] = str(e)

    return results
