"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings


class LedgerConfig(BaseSettings):
    """Loan accounting engine configuration"""
    
    # Storage configuration
    database_url: str = "sqlite:///loan_accounting.db"  # or memory://
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    overdue_refresh_api_key: str = ""  # Empty = batch refresh unprotected
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    
    # Business rules configuration
    schedule_window_days: int = 7
    default_page_size: int = 10
    
    # Performance configuration
    schedule_cache_ttl_seconds: int = 60
    
    class Config:
        env_prefix = "LOAN_ACCOUNTING_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config
