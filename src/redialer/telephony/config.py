"""
Voice provider configuration.
"""

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderType(str, Enum):
    """Supported voice provider adapters."""

    HTTP = "http"
    MOCK = "mock"


class TelephonyConfig(BaseSettings):
    """Voice provider configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="TELEPHONY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    provider_type: ProviderType = Field(default=ProviderType.MOCK)

    api_base_url: str = Field(default="https://api.voice-provider.local")
    api_key: str = Field(default="")

    # Public base URL the provider posts completions to
    webhook_base_url: str = Field(default="http://localhost:8000")
    # Shared secret for HMAC-SHA256 completion signatures; empty disables the check
    webhook_secret: str = Field(default="")

    request_timeout_seconds: float = Field(default=15.0, gt=0, le=120)

    # Policy parameters forwarded with every dispatch
    max_call_duration_minutes: int = Field(default=15, ge=1, le=120)
    voicemail_action: str = Field(default="hangup")

    def get_webhook_url(self, path: str = "/webhooks/voice/completions") -> str:
        base = self.webhook_base_url.rstrip("/")
        return f"{base}{path}"


def get_telephony_config() -> TelephonyConfig:
    return TelephonyConfig()
