"""
Application Settings and Configuration.

Loads configuration from environment variables and config files.
Covers the remote gateway connection, workflow timings and app settings.
"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from .paths import default_database_url


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment variables:
        QUANTPILOT_GATEWAY_MODE: "local" (in-process store) or "remote"
        QUANTPILOT_GATEWAY_BASE_URL: Remote platform API root
        QUANTPILOT_APP_ID: Application id on the remote platform
        QUANTPILOT_GATEWAY_TOKEN: Bearer token for the remote platform
        DATABASE_URL: Database connection URL for local mode (default: sqlite)
    """

    # Remote gateway configuration
    gateway_mode: str = Field(default="local", alias="QUANTPILOT_GATEWAY_MODE")
    gateway_base_url: str = Field(default="https://app.base44.com/api", alias="QUANTPILOT_GATEWAY_BASE_URL")
    gateway_app_id: Optional[str] = Field(default=None, alias="QUANTPILOT_APP_ID")
    gateway_token: Optional[str] = Field(default=None, alias="QUANTPILOT_GATEWAY_TOKEN")
    gateway_timeout_seconds: float = Field(default=60.0, alias="QUANTPILOT_GATEWAY_TIMEOUT_SECONDS")
    login_url: str = Field(default="https://app.base44.com/login", alias="QUANTPILOT_LOGIN_URL")

    @field_validator("gateway_token", "gateway_app_id")
    @classmethod
    def strip_credentials(cls, v):
        """Strip whitespace from credentials to prevent authentication failures."""
        return v.strip() if v else v

    @field_validator("gateway_mode")
    @classmethod
    def validate_gateway_mode(cls, v: str) -> str:
        mode = (v or "").strip().lower()
        if mode not in {"local", "remote"}:
            raise ValueError("gateway mode must be either 'local' or 'remote'")
        return mode

    # Database Configuration
    database_url: str = Field(
        default=default_database_url(),
        alias="DATABASE_URL"
    )
    sql_echo: bool = Field(default=False, alias="SQL_ECHO")

    # Application Configuration
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_directory: Optional[str] = Field(default=None, alias="QUANTPILOT_LOG_DIR")
    log_retention_days: int = Field(default=14, alias="QUANTPILOT_LOG_RETENTION_DAYS")
    cors_origins: str = Field(default="http://localhost:5173,http://localhost:3000", alias="QUANTPILOT_CORS_ORIGINS")

    # API authentication (optional for local dev/test)
    api_auth_enabled: bool = Field(default=False, alias="QUANTPILOT_API_KEY_AUTH_ENABLED")
    api_auth_key: Optional[str] = Field(default=None, alias="QUANTPILOT_API_KEY")
    backend_reload: bool = Field(default=False, alias="QUANTPILOT_BACKEND_RELOAD")

    # Workflow timings
    market_data_poll_seconds: float = Field(default=60.0, alias="QUANTPILOT_MARKET_DATA_POLL_SECONDS")
    funding_poll_seconds: float = Field(default=30.0, alias="QUANTPILOT_FUNDING_POLL_SECONDS")
    settle_delay_seconds: float = Field(default=2.0, alias="QUANTPILOT_SETTLE_DELAY_SECONDS")
    onboarding_redirect_delay_seconds: float = Field(
        default=2.0, alias="QUANTPILOT_ONBOARDING_REDIRECT_DELAY_SECONDS"
    )
    signal_batch_limit: int = Field(default=2, alias="QUANTPILOT_SIGNAL_BATCH_LIMIT")

    # Paper brokerage (local mode only)
    paper_starting_cash: float = Field(default=0.0, alias="QUANTPILOT_PAPER_STARTING_CASH")
    paper_auto_approve: bool = Field(default=True, alias="QUANTPILOT_PAPER_AUTO_APPROVE")

    # SMTP email delivery configuration (local mode welcome emails)
    smtp_host: Optional[str] = Field(default=None, alias="QUANTPILOT_SMTP_HOST")
    smtp_port: int = Field(default=587, alias="QUANTPILOT_SMTP_PORT")
    smtp_username: Optional[str] = Field(default=None, alias="QUANTPILOT_SMTP_USERNAME")
    smtp_password: Optional[str] = Field(default=None, alias="QUANTPILOT_SMTP_PASSWORD")
    smtp_from_email: Optional[str] = Field(default=None, alias="QUANTPILOT_SMTP_FROM_EMAIL")
    smtp_use_tls: bool = Field(default=True, alias="QUANTPILOT_SMTP_USE_TLS")
    smtp_use_ssl: bool = Field(default=False, alias="QUANTPILOT_SMTP_USE_SSL")
    smtp_timeout_seconds: int = Field(default=15, alias="QUANTPILOT_SMTP_TIMEOUT_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
    )


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get application settings singleton.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None

