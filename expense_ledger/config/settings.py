"""
Configuration Management for Expense Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Backend credentials (Cloudinary, Google Sheets) are only required when the
matching backend is selected in StorageSettings; the in-memory backends
need no configuration at all.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CloudinarySettings(BaseSettings):
    """Cloudinary receipt blob store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDINARY_",
        extra="ignore"
    )

    cloud_name: str = Field(
        ...,
        description="Cloudinary cloud name"
    )
    api_key: str = Field(
        ...,
        description="Cloudinary API key"
    )
    api_secret: str = Field(
        ...,
        description="Cloudinary API secret"
    )
    folder: str = Field(
        default="expense_ledger/receipts",
        description="Folder that holds receipt blobs"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets configuration for the receipt index and audit log."""

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
        description="ID of the spreadsheet holding receipt metadata"
    )
    receipts_sheet_name: str = Field(
        default="Receipts",
        description="Name of the sheet for receipt metadata"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit events"
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


class StorageSettings(BaseSettings):
    """Store selection, timeouts and retry policy."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    blob_backend: Literal["memory", "cloudinary"] = Field(
        default="memory",
        description="Where receipt bytes are kept"
    )
    receipt_index_backend: Literal["memory", "google_sheets"] = Field(
        default="memory",
        description="Where receipt metadata is kept"
    )
    audit_backend: Literal["local", "google_sheets"] = Field(
        default="local",
        description="Where audit events are persisted besides the local log"
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=300,
        description="Default per-call timeout for store operations"
    )
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for retried steps (cascade clear, orphan cleanup)"
    )
    retry_max_wait_seconds: float = Field(
        default=4.0,
        ge=0,
        description="Upper bound for exponential backoff between attempts"
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

    # Receipt upload limits
    max_upload_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum receipt file size in MB"
    )
    allowed_receipt_types: str = Field(
        default="image/jpeg,image/png,image/webp,image/gif,application/pdf",
        description="Comma-separated list of accepted receipt mime types"
    )

    # Reports
    min_report_year: int = Field(
        default=1900,
        description="Earliest year accepted by the monthly report"
    )
    max_report_year: int = Field(
        default=2100,
        description="Latest year accepted by the monthly report"
    )

    # Listing
    default_page_size: int = Field(
        default=20,
        ge=1,
        le=500,
        description="Page size used when the caller does not supply one"
    )

    @property
    def allowed_receipt_types_list(self) -> list[str]:
        """Get accepted mime types as a list."""
        return [t.strip().lower() for t in self.allowed_receipt_types.split(",") if t.strip()]

    @property
    def max_upload_size_bytes(self) -> int:
        """Get max upload size in bytes."""
        return self.max_upload_size_mb * 1024 * 1024


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

    # Sub-settings are built lazily so that a partially configured
    # environment (no Cloudinary, no Sheets) still loads.

    @property
    def cloudinary(self) -> CloudinarySettings:
        return CloudinarySettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

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


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus `<name>_error`
    entries describing why a section failed to load.
    """
    results = {}

    settings = get_settings()

    for name in ("cloudinary", "google_sheets", "storage", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
