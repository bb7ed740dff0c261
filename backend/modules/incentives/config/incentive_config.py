# backend/modules/incentives/config/incentive_config.py

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class IncentiveConfig(BaseSettings):
    """Incentive engine configuration with validation"""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    # Daily calculation
    INCENTIVE_MIN_PAID_BILLS: int = Field(
        default=2,
        description="Minimum paid bills per user per day when the daily target rule sets none",
    )
    INCENTIVE_CURRENCY: str = Field(
        default="INR", description="Currency recorded on payouts"
    )

    # Rule store cache
    RULE_CACHE_MAX_SIZE: int = Field(
        default=256, description="Maximum resolved rules kept per rule store"
    )
    RULE_CACHE_TTL_SECONDS: float = Field(
        default=60, description="Lifetime of a cached rule resolution"
    )
    RULE_CACHE_BUCKET_SECONDS: int = Field(
        default=60, description="Width of the instant bucket used in cache keys"
    )

    # Leaderboards
    LEADERBOARD_LIMIT: int = Field(
        default=100, description="Number of entries returned by a leaderboard"
    )

    # Batch jobs
    BATCH_MAX_WORKERS: int = Field(
        default=4, description="Parallel units processed by batch runs"
    )

    # Audit
    AUDIT_SYSTEM_ACTOR: str = Field(
        default="system", description="Actor recorded for engine-initiated changes"
    )

    @field_validator(
        "INCENTIVE_MIN_PAID_BILLS",
        "RULE_CACHE_MAX_SIZE",
        "RULE_CACHE_BUCKET_SECONDS",
        "LEADERBOARD_LIMIT",
        "BATCH_MAX_WORKERS",
    )
    @classmethod
    def validate_positive(cls, v, info):
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return v

    @field_validator("RULE_CACHE_TTL_SECONDS")
    @classmethod
    def validate_ttl(cls, v):
        if v < 0:
            raise ValueError("RULE_CACHE_TTL_SECONDS cannot be negative")
        return v


@lru_cache()
def get_incentive_config() -> IncentiveConfig:
    return IncentiveConfig()
