"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class FinLedgerConfig(BaseSettings):
    """Ledger configuration, read from FINLEDGER_* environment variables"""

    model_config = SettingsConfigDict(
        env_prefix="FINLEDGER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    database_url: str = "sqlite:///finledger.db"  # "memory://" for in-memory storage

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8091

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Account numbering
    account_number_digits: int = 8
    account_number_max_attempts: int = 10

    # Recurring rules
    recurring_description_suffix: str = " (Recurring)"
    adjust_past_start_dates: bool = True

    # Feature flags
    enable_audit_logging: bool = True


# Global configuration instance
config = FinLedgerConfig()


def get_config() -> FinLedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> FinLedgerConfig:
    """Reload configuration from environment"""
    global config
    config = FinLedgerConfig()
    return config
