"""
FastAPI dependencies for the redial components held on ``app.state``.
"""

from fastapi import HTTPException, Request, status

from redialer.calls.scheduler import RedialScheduler
from redialer.telephony.interface import VoiceProvider


def get_redial_scheduler(request: Request) -> RedialScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Redial scheduler not initialized",
        )
    return scheduler


def get_voice_provider(request: Request) -> VoiceProvider:
    provider = getattr(request.app.state, "voice_provider", None)
    if provider is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Voice provider not initialized",
        )
    return provider
