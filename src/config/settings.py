"""
Configuration Management for Personal Budget

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

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

    # Sheet names within the spreadsheet
    items_sheet_name: str = Field(
        default="BudgetItems",
        description="Name of the sheet for budget items"
    )
    users_sheet_name: str = Field(
        default="Users",
        description="Name of the sheet mapping user ids to emails"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
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


class EmailSettings(BaseSettings):
    """SMTP configuration for owner notifications."""

    model_config = SettingsConfigDict(
        env_prefix="SMTP_",
        extra="ignore"
    )

    host: str = Field(
        ...,
        description="SMTP server host"
    )
    port: int = Field(
        default=587,
        ge=1,
        le=65535,
    )
    username: Optional[str] = Field(
        default=None,
        description="SMTP login (omit for unauthenticated relays)"
    )
    password: Optional[str] = None
    from_address: str = Field(
        default="Personal Budget <noreply@personalbudget.com>",
        description="Sender shown on notification emails"
    )
    use_starttls: bool = Field(
        default=True,
        description="Upgrade the connection with STARTTLS"
    )
    timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Socket timeout for the SMTP connection"
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

    # Trigger authentication
    cron_secret: Optional[str] = Field(
        default=None,
        description="Shared secret the scheduler sends as a Bearer token"
    )

    # Timeouts for collaborator calls
    persistence_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=300,
        description="Timeout for a single storage call"
    )
    notification_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Timeout for delivering one owner's notification"
    )

    # Notification content
    currency_label: str = Field(
        default="IDR",
        max_length=10,
        description="Currency label printed before amounts"
    )
    notification_subject: str = Field(
        default="New Recurring Budget Items Added",
        description="Subject line of the recurring items email"
    )

    # Projections
    max_projected_occurrences: int = Field(
        default=366,
        ge=1,
        le=5000,
        description="Upper bound on occurrences listed per item"
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
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def email(self) -> EmailSettings:
        return EmailSettings()

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

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("google_sheets", "email", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
