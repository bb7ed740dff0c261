"""
Application configuration.

Values come from environment variables (or a local .env file) so that
database credentials and runtime switches never live in code.
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """
    Application settings with environment variable support.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Database Configuration
    database_url: str = "sqlite:///./incentives.db"
    db_pool_size: int = 10
    db_max_overflow: int = 20
    log_sql_queries: bool = False

    # Environment Settings
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Accept any case, store upper case."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unsupported log level: {v}")
        return level


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Returns:
        Settings instance with environment variables loaded
    """
    return Settings()
