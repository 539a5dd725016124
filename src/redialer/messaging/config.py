"""
Outbound text message limits.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SmsLimitConfig(BaseSettings):
    """Per-number daily ceiling for outbound texts."""

    model_config = SettingsConfigDict(
        env_prefix="SMS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool = Field(default=True)
    max_per_day: int = Field(default=2, ge=1, le=100)
    timezone: str = Field(default="America/New_York")


def get_sms_limit_config() -> SmsLimitConfig:
    return SmsLimitConfig()
