"""
FastAPI router for voice provider completion webhooks.

The handler only verifies, parses and forwards: the completion is turned into
a ``CompletionEvent`` and handed to the redial scheduler. Handling is
idempotent, so a provider redelivering the same completion is harmless.
"""

from __future__ import annotations

import json
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from redialer.calls.dependencies import get_redial_scheduler, get_voice_provider
from redialer.calls.scheduler import RedialScheduler
from redialer.shared.logging import correlation_id_var, get_logger
from redialer.telephony.interface import VoiceProvider, WebhookParseError

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks/voice", tags=["webhooks"])


@router.post("/completions", status_code=status.HTTP_200_OK)
async def receive_completion(
    request: Request,
    provider: Annotated[VoiceProvider, Depends(get_voice_provider)],
    scheduler: Annotated[RedialScheduler, Depends(get_redial_scheduler)],
    x_signature: Annotated[str | None, Header()] = None,
) -> dict[str, Any]:
    body = await request.body()
    if not provider.validate_webhook_signature(body, x_signature):
        logger.warning("Completion webhook signature rejected")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = json.loads(body or b"{}")
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body is not JSON") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body must be a JSON object")

    try:
        event = provider.parse_completion(payload)
    except WebhookParseError as exc:
        logger.warning("Completion webhook rejected", extra={"error": str(exc)})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    token = correlation_id_var.set(event.attempt_id)
    try:
        result = await scheduler.handle_completion(event)
    finally:
        correlation_id_var.reset(token)

    return {
        "ok": True,
        "attempt_id": result.attempt_id,
        "correlated": result.correlated,
        "applied": result.applied,
        "duplicate": result.duplicate,
        "status": result.status.value if result.status is not None else None,
    }
