"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic import Field
from pydantic_settings import BaseSettings
from typing import Optional


class LedgerConfig(BaseSettings):
    """Ledger configuration"""

    # Database configuration
    database_url: str = "sqlite:///ledger.db"  # memory://, sqlite:///path or postgresql://...
    sqlite_busy_timeout_seconds: float = Field(default=5.0, ge=0)

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Retry / backoff configuration
    backoff_base_delay_millis: float = Field(default=100, ge=0)
    backoff_jitter_window_millis: float = Field(default=100, ge=0)
    backoff_max_delay_millis: Optional[float] = Field(default=10_000, ge=0)  # None = uncapped
    max_attempts: Optional[int] = Field(default=None, ge=1)  # None = retry until commit

    class Config:
        env_prefix = "LEDGER_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
