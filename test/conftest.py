"""
Pytest configuration and shared fixtures for the redialer tests.
"""

from __future__ import annotations

import itertools
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from tenacity import wait_none

import redialer.messaging.models  # noqa: F401
import redialer.prospects.models  # noqa: F401
from redialer.calls.business_hours import BusinessHours
from redialer.calls.config import (
    BusinessHoursConfig,
    GovernorConfig,
    LedgerConfig,
    RedialPolicy,
)
from redialer.calls.governor import RateGovernor
from redialer.calls.ledger import AttemptLedger
from redialer.calls.registry import PendingAttemptRegistry
from redialer.calls.scheduler import RedialScheduler
from redialer.crm.client import CrmError
from redialer.prospects.repository import InMemoryProspectRecordRepository
from redialer.shared.database import Base
from redialer.telephony.events import CompletionEvent
from redialer.telephony.interface import DispatchRequest
from redialer.telephony.mock_adapter import MockVoiceProvider

# Monday 2024-03-04 10:00 America/New_York (EST, UTC-5)
T0 = datetime(2024, 3, 4, 15, 0, tzinfo=timezone.utc)
PHONE = "+15550102030"


class Clock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


class FakeCrm:
    """Stands in for ``CrmClient``; records every update."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self.updates: list[dict[str, Any]] = []
        self.error: CrmError | None = None

    async def log_outcome(
        self,
        prospect_id: str,
        phone_number: str,
        status: str,
        list_id: str | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        if self.error is not None:
            raise self.error
        update = {
            "prospect_id": prospect_id,
            "phone_number": phone_number,
            "status": status,
            "list_id": list_id,
            "notes": notes,
        }
        self.updates.append(update)
        return {"ok": True}

    async def close(self) -> None:
        return None


def completion_for(
    provider: MockVoiceProvider,
    request: DispatchRequest,
    outcome: str,
    completed_at: datetime,
    **extra: Any,
) -> CompletionEvent:
    """Parse the payload the mock provider would post back for ``request``."""
    payload = MockVoiceProvider.completion_payload(request, outcome, completed_at=completed_at, **extra)
    return provider.parse_completion(payload)


# ---------------------------------------------------------------------------
# Time and configuration
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def policy() -> RedialPolicy:
    return RedialPolicy(
        enabled=True,
        max_attempts=7,
        max_attempts_per_day=10,
        backoff_minutes=[0, 0, 5, 10, 30, 60, 120],
        backoff_floor_minutes=2,
        retry_delta_minutes=5,
        processing_window_days=30,
        retention_days=30,
        dispatch_timeout_seconds=5.0,
        dispatch_retry_attempts=3,
        stale_attempt_minutes=90,
        sweep_interval_minutes=10,
    )


@pytest.fixture
def ledger_config() -> LedgerConfig:
    return LedgerConfig(
        timezone="America/New_York",
        transfer_safety_minutes=30,
        settle_margin_seconds=30,
    )


@pytest.fixture
def governor_config() -> GovernorConfig:
    return GovernorConfig(enabled=True, max_per_second=5, same_number_spacing_seconds=120)


@pytest.fixture
def always_open() -> BusinessHours:
    return BusinessHours(BusinessHoursConfig(enabled=False))


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------


@pytest.fixture
def ledger(ledger_config: LedgerConfig) -> AttemptLedger:
    return AttemptLedger(ledger_config)


@pytest.fixture
def governor(governor_config: GovernorConfig) -> RateGovernor:
    return RateGovernor(governor_config)


@pytest.fixture
def registry() -> PendingAttemptRegistry:
    return PendingAttemptRegistry()


@pytest.fixture
def repository() -> InMemoryProspectRecordRepository:
    return InMemoryProspectRecordRepository("America/New_York")


@pytest.fixture
def provider() -> MockVoiceProvider:
    return MockVoiceProvider()


@pytest.fixture
def crm() -> FakeCrm:
    return FakeCrm()


@pytest.fixture
def make_scheduler(
    repository: InMemoryProspectRecordRepository,
    provider: MockVoiceProvider,
    ledger: AttemptLedger,
    governor: RateGovernor,
    registry: PendingAttemptRegistry,
    policy: RedialPolicy,
    always_open: BusinessHours,
    crm: FakeCrm,
    clock: Clock,
) -> Callable[..., RedialScheduler]:
    """Build a scheduler over the shared fixtures; keyword overrides win."""

    def _make(**overrides: Any) -> RedialScheduler:
        ids = itertools.count(1)
        kwargs: dict[str, Any] = {
            "repository": repository,
            "provider": provider,
            "ledger": ledger,
            "governor": governor,
            "registry": registry,
            "policy": policy,
            "business_hours": always_open,
            "crm": crm,
            "callback_url": "https://redialer.test/webhooks/voice/completions",
            "clock": clock,
            "attempt_id_factory": lambda: f"att-{next(ids)}",
            "retry_wait": wait_none(),
        }
        kwargs.update(overrides)
        return RedialScheduler(**kwargs)

    return _make


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine shared across sessions of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)
