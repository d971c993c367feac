"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class MicrofinanceConfig(BaseSettings):
    """Lending core configuration"""

    # Database configuration
    database_url: str = "sqlite:///microfinance.db"  # sqlite:///path or memory://

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 5000
    cors_origin: str = "http://localhost:3000"

    # Security configuration
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24 * 7
    auth_enabled: bool = True

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    repayment_edit_window_hours: int = 24
    loan_number_prefix: str = "LN"
    loan_number_width: int = 8
    customer_code_prefix: str = "CUST"
    customer_code_width: int = 6

    # Pagination
    default_page_size: int = 20
    max_page_size: int = 100

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "MFI_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = MicrofinanceConfig()


def get_config() -> MicrofinanceConfig:
    """Get global configuration instance"""
    return config
