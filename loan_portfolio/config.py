"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LoanPortfolioConfig(BaseSettings):
    """Loan portfolio service configuration"""

    # Storage configuration
    use_sqlite: bool = True
    database_path: str = "loan_portfolio.db"  # ":memory:" for a throwaway database

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Security configuration
    auth_enabled: bool = True
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24
    dev_user_id: str = "dev_user"  # Acting user when auth is disabled

    # Logging configuration
    log_level: str = "INFO"
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    restore_window_days: int = 30  # Days a soft-deleted loan stays restorable
    upcoming_payment_days: int = 30  # Default look-ahead for reminders

    class Config:
        env_prefix = "LOANS_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LoanPortfolioConfig()


def get_config() -> LoanPortfolioConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LoanPortfolioConfig:
    """Reload configuration from environment"""
    global config
    config = LoanPortfolioConfig()
    return config
