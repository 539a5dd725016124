"""
Operator controls for the redial core.

Each concern reads its own env prefix so operators can tune the policy,
the ledger margins, the rate ceiling and the business-hours window
independently.
"""

from datetime import time
from typing import Annotated, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_BACKOFF_MINUTES = [0, 0, 5, 10, 30, 60, 120]
DEFAULT_QUALIFYING_OUTCOMES = [
    "TRANSFERRED",
    "SALE",
    "NOT_INTERESTED",
    "DO_NOT_CALL",
    "WRONG_NUMBER",
]


def _split_csv(value: Any) -> Any:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class RedialPolicy(BaseSettings):
    """Retry policy consumed by the redial scheduler."""

    model_config = SettingsConfigDict(
        env_prefix="REDIAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool = Field(default=True)
    max_attempts: int = Field(default=8, ge=1, le=100)
    max_attempts_per_day: int = Field(default=3, ge=1, le=50)
    backoff_minutes: Annotated[list[int], NoDecode] = Field(default_factory=lambda: list(DEFAULT_BACKOFF_MINUTES))
    backoff_floor_minutes: int = Field(default=2, ge=0, le=1440)
    retry_delta_minutes: int = Field(default=5, ge=1, le=240)
    processing_window_days: int = Field(default=30, ge=1, le=366)
    retention_days: int = Field(default=30, ge=1, le=3660)
    qualifying_outcomes: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_QUALIFYING_OUTCOMES)
    )
    dispatch_timeout_seconds: float = Field(default=30.0, gt=0, le=300)
    dispatch_retry_attempts: int = Field(default=3, ge=1, le=10)
    stale_attempt_minutes: int = Field(default=90, ge=1, le=1440)
    sweep_interval_minutes: int = Field(default=10, ge=1, le=1440)

    @field_validator("backoff_minutes", mode="before")
    @classmethod
    def parse_backoff(cls, v: Any) -> Any:
        return _split_csv(v)

    @field_validator("backoff_minutes")
    @classmethod
    def validate_backoff(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("backoff table must have at least one entry")
        if any(minutes < 0 for minutes in v):
            raise ValueError("backoff entries must be >= 0")
        return v

    @field_validator("qualifying_outcomes", mode="before")
    @classmethod
    def parse_qualifying(cls, v: Any) -> Any:
        v = _split_csv(v)
        if isinstance(v, list):
            return [str(item).strip().upper() for item in v]
        return v


class LedgerConfig(BaseSettings):
    """Engagement margins and the local day used for daily counts."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    timezone: str = Field(default="America/New_York")
    transfer_safety_minutes: int = Field(default=30, ge=0, le=240)
    settle_margin_seconds: int = Field(default=30, ge=0, le=3600)


class GovernorConfig(BaseSettings):
    """Global attempts-per-second ceiling and same-number spacing."""

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool = Field(default=True)
    max_per_second: int = Field(default=5, ge=1, le=1000)
    same_number_spacing_seconds: int = Field(default=120, ge=0, le=86400)


class BusinessHoursConfig(BaseSettings):
    """Dispatch window in the operator's local time."""

    model_config = SettingsConfigDict(
        env_prefix="BUSINESS_HOURS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool = Field(default=True)
    timezone: str = Field(default="America/New_York")
    start: time = Field(default=time(9, 0))
    end: time = Field(default=time(17, 0))
    # ISO weekday numbers, Monday=1
    days: Annotated[list[int], NoDecode] = Field(default_factory=lambda: [1, 2, 3, 4, 5])

    @field_validator("days", mode="before")
    @classmethod
    def parse_days(cls, v: Any) -> Any:
        return _split_csv(v)

    @field_validator("days")
    @classmethod
    def validate_days(cls, v: list[int]) -> list[int]:
        if any(day < 1 or day > 7 for day in v):
            raise ValueError("days must be ISO weekday numbers 1..7")
        return sorted(set(v))


def get_redial_policy() -> RedialPolicy:
    return RedialPolicy()


def get_ledger_config() -> LedgerConfig:
    return LedgerConfig()


def get_governor_config() -> GovernorConfig:
    return GovernorConfig()


def get_business_hours_config() -> BusinessHoursConfig:
    return BusinessHoursConfig()
