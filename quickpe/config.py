"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class WalletConfig(BaseSettings):
    """QuickPe wallet configuration"""

    # Storage configuration
    database_url: str = "sqlite:///quickpe.db"  # or memory://

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 5001
    cors_origins: str = "*"  # Comma separated

    # Security configuration
    jwt_secret: str = "change-me-in-production"
    jwt_expiry_hours: int = 24
    jwt_algorithm: str = "HS256"
    password_min_length: int = 6

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration (amounts as Decimal strings)
    currency: str = "INR"
    signup_bonus: str = "0.00"
    min_transfer_amount: str = "1.00"
    max_transfer_amount: str = "1000000.00"
    max_daily_transfer_amount: str = "1000000.00"
    min_request_amount: str = "1.00"
    max_request_amount: str = "80000.00"
    max_daily_request_amount: str = "80000.00"  # Per requester -> requestee pair
    request_expiry_hours: int = 24
    min_add_money_amount: str = "1.00"
    max_add_money_amount: str = "100000.00"
    max_daily_add_money_attempts: int = 5
    low_balance_threshold: str = "100.00"

    # Analytics cache
    analytics_cache_ttl_seconds: int = 300  # 5 minutes
    analytics_cache_max_size: int = 100

    # Notification delivery
    notification_webhook_url: str = ""  # Empty = disabled
    notification_webhook_timeout: float = 5.0

    # Feature flags
    enable_audit_logging: bool = True
    enable_webhook_notifications: bool = False

    class Config:
        env_prefix = "QUICKPE_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = WalletConfig()


def get_config() -> WalletConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> WalletConfig:
    """Reload configuration from environment"""
    global config
    config = WalletConfig()
    return config
