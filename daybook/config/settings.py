"""
Daybook configuration.

Every knob is read from the environment (or a .env file) through
pydantic-settings, grouped by the part of the system it steers.

DESIGN DECISION: Drive access and ledger behaviour live in
separate settings classes so guest mode can run without any Drive variables.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleDriveSettings(BaseSettings):
    """Google Drive blob store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_DRIVE_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Service account key file used for Drive access"
    )

    # Folder holding every day-file and the settings document
    folder_name: str = Field(
        default="QuickBook Data",
        description="Name of the Drive folder for ledger files"
    )
    settings_file_name: str = Field(
        default="user_setting.json",
        description="Name of the user settings document"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn early about a missing key file; secrets may be mounted after import."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"No service account key at {v}; "
                "Drive-backed sessions will fail until it is provided."
            )
        return v


class LedgerSettings(BaseSettings):
    """Ledger behaviour: identity, currencies and file format."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    user_name: str = Field(
        default="UnknownUser",
        description="Account name of the signed-in user (used in file names)"
    )
    guest_mode: bool = Field(
        default=False,
        description="Keep the ledger in memory only, never touch the store"
    )
    default_currency: str = Field(
        default="TWD",
        min_length=3,
        max_length=10,
        description="Currency used when an entry does not name one"
    )

    # Day-file format
    file_version: str = Field(
        default="2.0",
        description="Schema version written into new day-file headers"
    )
    signer_id: str = Field(
        default="user_private_key_id",
        description="Identifier recorded in the day-file signature"
    )
    history_page_size: int = Field(
        default=30,
        ge=1,
        le=500,
        description="Default number of history rows returned"
    )

    # Exchange-rate snapshot copied into every header
    rate_base_currency: str = Field(
        default="TWD",
        description="Base currency of the exchange-rate snapshot"
    )
    exchange_rates: dict[str, Decimal] = Field(
        default_factory=lambda: {
            "USD": Decimal("32.55"),
            "JPY": Decimal("0.215"),
            "EUR": Decimal("35.12"),
        },
        description="Units of the base currency per unit of each currency"
    )
    rate_source: str = Field(
        default="Bank of Taiwan / Open API",
        description="Where the exchange-rate snapshot came from"
    )

    @field_validator('default_currency', 'rate_base_currency')
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.strip().upper()


class Settings(BaseSettings):
    """
    Entry point for every settings group.

    Each group is built and validated on access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Built on access so a guest session never needs Drive variables

    @property
    def google_drive(self) -> GoogleDriveSettings:
        return GoogleDriveSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Return the process-wide settings object.

    Built once per process; tests that change the environment
    call get_settings.cache_clear() afterwards.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Try to build each settings group.

    Maps group name to success, with a "<name>_error" message for failures,
    so a deployment can report what is missing before serving.
    """
    results = {}

    settings = get_settings()

    for name in ("google_drive", "ledger"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
