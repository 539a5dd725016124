"""
REST voice provider adapter.

Dispatches attempts with ``POST {api_base_url}/v1/calls`` and classifies
failures: timeouts, connection errors, 5xx and 429 are transient; any other
error status is a rejection.
"""

from datetime import datetime, timezone
from typing import Any

import httpx

from redialer.shared.logging import get_logger
from redialer.telephony.config import TelephonyConfig
from redialer.telephony.interface import (
    CallInitiationError,
    DispatchRequest,
    DispatchResponse,
    TransientProviderError,
    VoiceProvider,
)
from redialer.telephony.outcomes import DEFAULT_QUALIFYING, OutcomeCode

logger = get_logger(__name__)


class HttpVoiceProvider(VoiceProvider):
    """Voice provider reached over a JSON REST API."""

    def __init__(
        self,
        config: TelephonyConfig,
        qualifying: frozenset[OutcomeCode] = DEFAULT_QUALIFYING,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            config: Provider settings (base URL, key, timeouts).
            qualifying: Outcome codes that end scheduling for a prospect.
            client: Optional pre-built client, e.g. with a mock transport in tests.
        """
        super().__init__(qualifying=qualifying, webhook_secret=config.webhook_secret)
        self._config = config
        self._client = client

    def provider_name(self) -> str:
        return "http"

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._config.api_base_url,
                headers={"Authorization": f"Bearer {self._config.api_key}"},
                timeout=self._config.request_timeout_seconds,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def dispatch(self, request: DispatchRequest) -> DispatchResponse:
        client = await self._get_client()
        body: dict[str, Any] = {
            "phone_number": request.phone_number,
            "webhook": request.callback_url,
            "max_duration": self._config.max_call_duration_minutes,
            "voicemail_action": self._config.voicemail_action,
            "request_data": {
                "first_name": request.first_name or "",
                "last_name": request.last_name or "",
                "list_id": request.list_id or "",
            },
            "metadata": {
                "attempt_id": request.attempt_id,
                "prospect_id": request.prospect_id,
                "phone_number": request.phone_number,
                **request.metadata,
            },
        }

        logger.info(
            "Dispatching attempt",
            extra={
                "attempt_id": request.attempt_id,
                "prospect_id": request.prospect_id,
                "phone_number": request.phone_number,
            },
        )

        try:
            response = await client.post("/v1/calls", json=body)
        except httpx.TimeoutException as exc:
            raise TransientProviderError(
                message=f"Provider timeout: {exc}",
                error_code="TIMEOUT",
            ) from exc
        except httpx.TransportError as exc:
            raise TransientProviderError(
                message=f"Provider unreachable: {exc}",
                error_code="TRANSPORT_ERROR",
            ) from exc

        data = self._json(response)
        if response.status_code >= 500 or response.status_code == 429:
            raise TransientProviderError(
                message=f"Provider returned {response.status_code}",
                error_code=f"HTTP_{response.status_code}",
                provider_response=data,
            )
        if response.status_code >= 400:
            raise CallInitiationError(
                message=f"Provider rejected dispatch with {response.status_code}",
                error_code=f"HTTP_{response.status_code}",
                provider_response=data,
            )

        return DispatchResponse(
            attempt_id=request.attempt_id,
            provider_call_id=data.get("call_id"),
            accepted_at=datetime.now(timezone.utc),
            raw_response=data,
        )

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {"body": response.text}
        return data if isinstance(data, dict) else {"body": data}
