"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class SecbankConfig(BaseSettings):
    """SecBank core banking backend configuration"""

    model_config = SettingsConfigDict(
        env_prefix="SECBANK_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    database_path: str = "secbank.db"  # ":memory:" keeps everything in-process
    use_sqlite: bool = True

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    api_prefix: str = "/api/v1"

    # Security configuration
    jwt_secret: str = "SecBankCBSV2SecretKeyForJWTTokenGenerationMustBeAtLeast256Bits"
    jwt_algorithm: str = "HS256"
    access_token_ttl_seconds: int = 86400       # 24 hours
    refresh_token_ttl_seconds: int = 604800     # 7 days
    password_min_length: int = 8
    max_failed_login_attempts: int = 5

    # Audit configuration
    audit_queue_size: int = 10000
    enable_audit_logging: bool = True

    # Business rules configuration
    default_currency: str = "PHP"
    number_generation_retries: int = 3

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout


# Global configuration instance
config = SecbankConfig()


def get_config() -> SecbankConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> SecbankConfig:
    """Reload configuration from environment"""
    global config
    config = SecbankConfig()
    return config
