"""
Voice provider factory.
"""

from __future__ import annotations

from functools import lru_cache

from redialer.calls.config import get_redial_policy
from redialer.shared.logging import get_logger
from redialer.telephony.config import ProviderType, TelephonyConfig, get_telephony_config
from redialer.telephony.http_adapter import HttpVoiceProvider
from redialer.telephony.interface import VoiceProvider
from redialer.telephony.mock_adapter import MockVoiceProvider
from redialer.telephony.outcomes import qualifying_set

logger = get_logger(__name__)


def _mask(s: str, keep: int = 6) -> str:
    if not s:
        return ""
    if len(s) <= keep:
        return "*" * len(s)
    return f"{s[:keep]}***"


def build_voice_provider(cfg: TelephonyConfig, qualifying_outcomes: list[str] | None = None) -> VoiceProvider:
    qualifying = qualifying_set(qualifying_outcomes)

    logger.info(
        "Voice provider config resolved",
        extra={
            "provider_type": cfg.provider_type.value,
            "api_base_url": cfg.api_base_url,
            "api_key": _mask(cfg.api_key),
            "webhook_base_url": cfg.webhook_base_url,
        },
    )

    if cfg.provider_type == ProviderType.HTTP:
        return HttpVoiceProvider(cfg, qualifying=qualifying)
    if cfg.provider_type == ProviderType.MOCK:
        return MockVoiceProvider(qualifying=qualifying, webhook_secret=cfg.webhook_secret)

    raise ValueError(f"Unsupported voice provider_type: {cfg.provider_type}")


@lru_cache(maxsize=1)
def get_voice_provider() -> VoiceProvider:
    """Create and cache the process-wide voice provider."""
    return build_voice_provider(get_telephony_config(), get_redial_policy().qualifying_outcomes)
