"""
Voice provider interface definition.

The scheduler talks to the provider through two narrow calls:
``dispatch`` (start an attempt) and ``parse_completion`` (turn a posted
completion payload into a ``CompletionEvent``).
"""

import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import anyio

from redialer.telephony.events import CompletionEvent
from redialer.telephony.outcomes import (
    DEFAULT_QUALIFYING,
    OutcomeCode,
    classify,
    normalize_outcome,
)


@dataclass(frozen=True)
class DispatchRequest:
    """Request to start one outbound attempt."""

    attempt_id: str
    phone_number: str
    prospect_id: str
    callback_url: str
    list_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchResponse:
    """Provider acknowledgement of a dispatch."""

    attempt_id: str
    provider_call_id: str | None
    accepted_at: datetime
    raw_response: dict[str, Any] = field(default_factory=dict)


class TelephonyProviderError(Exception):
    """Base exception for voice provider errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.provider_response = provider_response or {}


class TransientProviderError(TelephonyProviderError):
    """Timeout, connection failure, 5xx or 429: safe to retry."""


class CallInitiationError(TelephonyProviderError):
    """Provider rejected the dispatch; retrying will not help."""


class WebhookParseError(TelephonyProviderError):
    """Completion payload is missing required fields."""


def _parse_ts(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, (int, float)):
        ts = datetime.fromtimestamp(float(value), tz=timezone.utc)
    else:
        try:
            ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _first(mapping: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value not in (None, ""):
            return value
    return None


class VoiceProvider(ABC):
    """Abstract voice provider.

    ``dispatch`` is async; adapters that only have a blocking client implement
    ``dispatch_sync`` and inherit the worker-thread bridge.
    """

    def __init__(
        self,
        qualifying: frozenset[OutcomeCode] = DEFAULT_QUALIFYING,
        webhook_secret: str = "",
    ) -> None:
        self._qualifying = qualifying
        self._webhook_secret = webhook_secret

    async def dispatch(self, request: DispatchRequest) -> DispatchResponse:
        return await anyio.to_thread.run_sync(self.dispatch_sync, request)

    def dispatch_sync(self, request: DispatchRequest) -> DispatchResponse:
        raise NotImplementedError("adapter has no blocking dispatch")

    @abstractmethod
    def provider_name(self) -> str:
        ...

    def parse_completion(self, payload: dict[str, Any]) -> CompletionEvent:
        """Parse a posted completion payload.

        Accepts the attempt id either top-level or inside ``metadata`` (the
        provider echoes back the metadata it was dispatched with).

        Raises:
            WebhookParseError: attempt id or phone number missing.
        """
        metadata = payload.get("metadata") or {}
        if not isinstance(metadata, dict):
            metadata = {}
        variables = payload.get("variables") or {}
        if not isinstance(variables, dict):
            variables = {}

        attempt_id = _first(metadata, "attempt_id") or _first(payload, "attempt_id")
        if not attempt_id:
            raise WebhookParseError(
                message="Missing attempt_id in completion payload",
                error_code="MISSING_ATTEMPT_ID",
                provider_response=payload,
            )

        phone = _first(payload, "phone_number", "to", "To") or _first(metadata, "phone_number")
        if not phone:
            raise WebhookParseError(
                message="Missing phone number in completion payload",
                error_code="MISSING_PHONE_NUMBER",
                provider_response=payload,
            )

        raw_outcome = _first(payload, "outcome", "disposition", "status")
        code = normalize_outcome(str(raw_outcome) if raw_outcome is not None else None)
        transferred = code == OutcomeCode.TRANSFERRED or bool(
            _first(payload, "transferred_to", "transferred")
        )
        settled_at = _parse_ts(_first(payload, "completed_at", "end_at", "ended_at")) or datetime.now(
            timezone.utc
        )
        callback_at = _parse_ts(
            _first(payload, "callback_at") or _first(metadata, "callback_at") or _first(variables, "callback_at")
        )

        provider_call_id = _first(payload, "call_id", "provider_call_id")

        return CompletionEvent(
            attempt_id=str(attempt_id),
            phone_number=str(phone),
            outcome=code,
            outcome_class=classify(code, self._qualifying),
            settled_at=settled_at,
            transferred=transferred,
            callback_at=callback_at,
            provider_call_id=str(provider_call_id) if provider_call_id is not None else None,
            raw_outcome=str(raw_outcome) if raw_outcome is not None else None,
            metadata={k: v for k, v in metadata.items() if k != "attempt_id"},
        )

    def validate_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        """HMAC-SHA256 over the raw body; always true when no secret is configured."""
        if not self._webhook_secret:
            return True
        if not signature:
            return False
        expected = hmac.new(self._webhook_secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature.strip())
