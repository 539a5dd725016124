"""
Tests for the REST voice provider adapter.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from redialer.telephony.config import TelephonyConfig
from redialer.telephony.http_adapter import HttpVoiceProvider
from redialer.telephony.interface import (
    CallInitiationError,
    DispatchRequest,
    TransientProviderError,
)


@pytest.fixture
def config() -> TelephonyConfig:
    return TelephonyConfig(
        provider_type="http",
        api_base_url="https://voice.test",
        api_key="secret-key",
        max_call_duration_minutes=10,
        voicemail_action="leave_message",
    )


@pytest.fixture
def request_() -> DispatchRequest:
    return DispatchRequest(
        attempt_id="att-1",
        phone_number="+15550102030",
        prospect_id="P1",
        callback_url="https://redialer.test/webhooks/voice/completions",
        list_id="L1",
        first_name="Ada",
        last_name="Lovelace",
    )


def _provider(config: TelephonyConfig, handler) -> HttpVoiceProvider:
    client = httpx.AsyncClient(
        base_url=config.api_base_url,
        headers={"Authorization": f"Bearer {config.api_key}"},
        transport=httpx.MockTransport(handler),
    )
    return HttpVoiceProvider(config, client=client)


class TestDispatch:
    @pytest.mark.asyncio
    async def test_success(self, config: TelephonyConfig, request_: DispatchRequest) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"call_id": "c-42", "status": "queued"})

        provider = _provider(config, handler)
        response = await provider.dispatch(request_)

        assert response.provider_call_id == "c-42"
        assert response.attempt_id == "att-1"
        body = json.loads(seen[0].content)
        assert set(body) == {
            "phone_number",
            "webhook",
            "max_duration",
            "voicemail_action",
            "request_data",
            "metadata",
        }
        assert seen[0].url.path == "/v1/calls"
        assert seen[0].headers["Authorization"] == "Bearer secret-key"
        assert body["phone_number"] == "+15550102030"
        assert body["webhook"] == request_.callback_url
        assert body["max_duration"] == 10
        assert body["voicemail_action"] == "leave_message"
        assert body["metadata"] == {
            "attempt_id": "att-1",
            "prospect_id": "P1",
            "phone_number": "+15550102030",
        }
        assert body["request_data"]["first_name"] == "Ada"
        await provider.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [429, 500, 503])
    async def test_transient_status(
        self,
        config: TelephonyConfig,
        request_: DispatchRequest,
        status_code: int,
    ) -> None:
        provider = _provider(config, lambda request: httpx.Response(status_code, json={}))

        with pytest.raises(TransientProviderError) as exc_info:
            await provider.dispatch(request_)

        assert exc_info.value.error_code == f"HTTP_{status_code}"

    @pytest.mark.asyncio
    async def test_rejection(self, config: TelephonyConfig, request_: DispatchRequest) -> None:
        provider = _provider(config, lambda request: httpx.Response(422, json={"error": "bad number"}))

        with pytest.raises(CallInitiationError) as exc_info:
            await provider.dispatch(request_)

        assert exc_info.value.provider_response == {"error": "bad number"}

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(
        self,
        config: TelephonyConfig,
        request_: DispatchRequest,
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        provider = _provider(config, handler)

        with pytest.raises(TransientProviderError) as exc_info:
            await provider.dispatch(request_)

        assert exc_info.value.error_code == "TRANSPORT_ERROR"


class TestParseCompletion:
    def test_parses_provider_payload(self, config: TelephonyConfig) -> None:
        provider = HttpVoiceProvider(config)
        event = provider.parse_completion(
            {
                "call_id": 42,
                "to": "+15550102030",
                "disposition": "Transferred",
                "transferred_to": "+15559990000",
                "ended_at": "2024-03-04T15:05:00Z",
                "metadata": {"attempt_id": "att-1", "prospect_id": "P1"},
            }
        )

        assert event.attempt_id == "att-1"
        assert event.transferred is True
        assert event.provider_call_id == "42"
        assert event.settled_at == datetime(2024, 3, 4, 15, 5, tzinfo=timezone.utc)
        assert event.metadata == {"prospect_id": "P1"}
