"""Tests for the mock voice provider."""

from datetime import datetime, timezone

import pytest

from redialer.telephony.interface import (
    CallInitiationError,
    DispatchRequest,
    TransientProviderError,
)
from redialer.telephony.mock_adapter import MockVoiceProvider
from redialer.telephony.outcomes import OutcomeClass, OutcomeCode


@pytest.fixture
def mock_provider() -> MockVoiceProvider:
    return MockVoiceProvider()


@pytest.fixture
def dispatch_request() -> DispatchRequest:
    return DispatchRequest(
        attempt_id="att-test-001",
        phone_number="+14155551234",
        prospect_id="P-1",
        callback_url="https://example.com/webhooks/voice/completions",
    )


class TestMockDispatch:
    @pytest.mark.asyncio
    async def test_dispatch_success(
        self,
        mock_provider: MockVoiceProvider,
        dispatch_request: DispatchRequest,
    ) -> None:
        response = await mock_provider.dispatch(dispatch_request)

        assert response.attempt_id == "att-test-001"
        assert response.provider_call_id == "MOCK_CALL_000001"
        assert response.raw_response["mock"] is True
        assert mock_provider.get_last_request() == dispatch_request

    @pytest.mark.asyncio
    async def test_call_ids_increment(
        self,
        mock_provider: MockVoiceProvider,
        dispatch_request: DispatchRequest,
    ) -> None:
        first = await mock_provider.dispatch(dispatch_request)
        second = await mock_provider.dispatch(dispatch_request)

        assert first.provider_call_id != second.provider_call_id
        assert len(mock_provider.requests) == 2

    @pytest.mark.asyncio
    async def test_configured_failure(
        self,
        mock_provider: MockVoiceProvider,
        dispatch_request: DispatchRequest,
    ) -> None:
        mock_provider.configure_failure(error_message="Test failure", error_code="TEST_ERROR")

        with pytest.raises(CallInitiationError) as exc_info:
            await mock_provider.dispatch(dispatch_request)

        assert exc_info.value.error_code == "TEST_ERROR"
        assert mock_provider.requests == []

    @pytest.mark.asyncio
    async def test_queued_failures_consumed_in_order(
        self,
        mock_provider: MockVoiceProvider,
        dispatch_request: DispatchRequest,
    ) -> None:
        mock_provider.fail_next(TransientProviderError("flaky", error_code="HTTP_503"))

        with pytest.raises(TransientProviderError):
            await mock_provider.dispatch(dispatch_request)
        response = await mock_provider.dispatch(dispatch_request)

        assert response.provider_call_id == "MOCK_CALL_000001"

    @pytest.mark.asyncio
    async def test_reset(
        self,
        mock_provider: MockVoiceProvider,
        dispatch_request: DispatchRequest,
    ) -> None:
        mock_provider.configure_failure()
        mock_provider.reset()

        await mock_provider.dispatch(dispatch_request)

        assert len(mock_provider.requests) == 1

    def test_provider_name(self, mock_provider: MockVoiceProvider) -> None:
        assert mock_provider.provider_name() == "mock"


class TestMockCompletionPayload:
    def test_round_trips_through_parse(
        self,
        mock_provider: MockVoiceProvider,
        dispatch_request: DispatchRequest,
    ) -> None:
        completed_at = datetime(2024, 3, 4, 15, 2, tzinfo=timezone.utc)
        payload = MockVoiceProvider.completion_payload(dispatch_request, "no_answer", completed_at=completed_at)

        event = mock_provider.parse_completion(payload)

        assert event.attempt_id == "att-test-001"
        assert event.phone_number == "+14155551234"
        assert event.outcome == OutcomeCode.NO_ANSWER
        assert event.outcome_class == OutcomeClass.RETRIABLE
        assert event.settled_at == completed_at
        assert event.provider_call_id == "MOCK_att-test-001"
