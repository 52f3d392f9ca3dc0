"""
Configuration Management for Coperacha

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Ledger node (JSON-RPC) and wallet factory configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )

    rpc_url: str = Field(
        ...,
        description="HTTP JSON-RPC endpoint of the ledger node"
    )
    factory_address: str = Field(
        ...,
        description="Address of the community wallet factory contract"
    )
    signer_private_key: str = Field(
        ...,
        description="Private key used to sign ledger writes"
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single RPC request"
    )
    transfers_page_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Transfers fetched for the full contribution report"
    )
    dashboard_transfers_page_size: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Transfers fetched for the dashboard top contributors"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets record store configuration."""

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
    users_sheet_name: str = Field(
        default="Users",
        description="Name of the sheet for identity records"
    )
    config_sheet_name: str = Field(
        default="Config",
        description="Name of the key/value configuration sheet"
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


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    Every field has a default so the conversation engine can run
    without any external configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
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

    # Conversation
    session_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Inactivity window before a session expires"
    )
    exit_phrases: str = Field(
        default="adios,adiós,salir,exit",
        description="Comma-separated list of phrases that end a conversation"
    )
    wallet_register_url: str = Field(
        default="https://metamask.io/download",
        description="Link sent to users who still need a personal wallet"
    )

    # Currency
    fallback_exchange_rate: float = Field(
        default=80000.0,
        gt=0,
        validation_alias=AliasChoices("ETH_TO_HNL", "FALLBACK_EXCHANGE_RATE"),
        description="Native-to-local multiplier used when the store has no rate"
    )
    native_symbol: str = Field(
        default="ETH",
        description="Display symbol of the ledger's native currency"
    )
    local_currency: str = Field(
        default="HNL",
        description="Display code of the local currency"
    )

    # Aggregation
    max_concurrent_queries: int = Field(
        default=8,
        ge=1,
        le=64,
        description="Upper bound on concurrent ledger reads per request"
    )
    top_contributors_limit: int = Field(
        default=5,
        ge=1,
        description="Contributors shown on the wallet dashboard"
    )
    recent_transactions_limit: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Transactions shown on dashboards and histories"
    )
    contributions_display_limit: int = Field(
        default=10,
        ge=1,
        description="Contributors listed in the contributions reply"
    )

    @property
    def exit_phrases_list(self) -> list[str]:
        """Get exit phrases as a normalized list."""
        return [p.strip().lower() for p in self.exit_phrases.split(",") if p.strip()]


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
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

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

    for name in ("ledger", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
