"""
Mock voice provider for tests and local runs.
"""

from datetime import datetime, timezone
from typing import Any

from redialer.shared.logging import get_logger
from redialer.telephony.interface import (
    CallInitiationError,
    DispatchRequest,
    DispatchResponse,
    TelephonyProviderError,
    VoiceProvider,
)
from redialer.telephony.outcomes import DEFAULT_QUALIFYING, OutcomeCode

logger = get_logger(__name__)


class MockVoiceProvider(VoiceProvider):
    """Records every dispatch and can be told to fail."""

    def __init__(
        self,
        qualifying: frozenset[OutcomeCode] = DEFAULT_QUALIFYING,
        webhook_secret: str = "",
    ) -> None:
        super().__init__(qualifying=qualifying, webhook_secret=webhook_secret)
        self._requests: list[DispatchRequest] = []
        self._next_call_id = 1
        self._failures: list[TelephonyProviderError] = []
        self._always_fail: TelephonyProviderError | None = None

    def provider_name(self) -> str:
        return "mock"

    def reset(self) -> None:
        self._requests.clear()
        self._next_call_id = 1
        self._failures.clear()
        self._always_fail = None

    def fail_next(self, *errors: TelephonyProviderError) -> None:
        """Queue errors raised by the next dispatches, one per call."""
        self._failures.extend(errors)

    def configure_failure(
        self,
        should_fail: bool = True,
        error_message: str = "Mock failure",
        error_code: str = "MOCK_ERROR",
    ) -> None:
        self._always_fail = (
            CallInitiationError(message=error_message, error_code=error_code) if should_fail else None
        )

    @property
    def requests(self) -> list[DispatchRequest]:
        return self._requests.copy()

    def get_last_request(self) -> DispatchRequest | None:
        return self._requests[-1] if self._requests else None

    def dispatch_sync(self, request: DispatchRequest) -> DispatchResponse:
        logger.info(
            "Mock: dispatching attempt",
            extra={"attempt_id": request.attempt_id, "phone_number": request.phone_number},
        )
        if self._failures:
            raise self._failures.pop(0)
        if self._always_fail is not None:
            raise self._always_fail

        self._requests.append(request)
        provider_call_id = f"MOCK_CALL_{self._next_call_id:06d}"
        self._next_call_id += 1
        return DispatchResponse(
            attempt_id=request.attempt_id,
            provider_call_id=provider_call_id,
            accepted_at=datetime.now(timezone.utc),
            raw_response={"mock": True, "call_id": provider_call_id},
        )

    @staticmethod
    def completion_payload(
        request: DispatchRequest,
        outcome: str,
        completed_at: datetime | None = None,
        **extra: Any,
    ) -> dict[str, Any]:
        """Build the payload the provider would post back for ``request``."""
        payload: dict[str, Any] = {
            "call_id": f"MOCK_{request.attempt_id}",
            "phone_number": request.phone_number,
            "outcome": outcome,
            "completed_at": (completed_at or datetime.now(timezone.utc)).isoformat(),
            "metadata": {"attempt_id": request.attempt_id, "prospect_id": request.prospect_id},
        }
        payload.update(extra)
        return payload
