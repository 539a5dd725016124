"""
CRM provider configuration.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CrmConfig(BaseSettings):
    """CRM connection and retry knobs from environment."""

    model_config = SettingsConfigDict(
        env_prefix="CRM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool = Field(default=False)
    api_base_url: str = Field(default="https://api.crm.local")
    auth_token: str = Field(default="")
    request_timeout_seconds: float = Field(default=10.0, gt=0, le=120)

    retry_attempts: int = Field(default=3, ge=1, le=10)
    retry_initial_seconds: float = Field(default=1.0, ge=0, le=60)
    retry_max_seconds: float = Field(default=10.0, ge=0, le=300)


def get_crm_config() -> CrmConfig:
    return CrmConfig()
