"""
Tests for the outbound text limiter.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from redialer.messaging.config import SmsLimitConfig
from redialer.messaging.sms_limiter import SmsRateLimiter

from conftest import PHONE, T0


@pytest.fixture
def limiter(session_factory: async_sessionmaker[AsyncSession]) -> SmsRateLimiter:
    return SmsRateLimiter(
        session_factory,
        SmsLimitConfig(enabled=True, max_per_day=2, timezone="America/New_York"),
    )


class TestDailyLimit:
    @pytest.mark.asyncio
    async def test_allows_up_to_limit(self, limiter: SmsRateLimiter) -> None:
        assert await limiter.try_acquire(PHONE, T0) is True
        assert await limiter.try_acquire(PHONE, T0 + timedelta(minutes=1)) is True
        assert await limiter.try_acquire(PHONE, T0 + timedelta(minutes=2)) is False

        assert await limiter.count_today(PHONE, T0) == 2

    @pytest.mark.asyncio
    async def test_formats_share_one_counter(self, limiter: SmsRateLimiter) -> None:
        await limiter.record_sent("(555) 010-2030", T0)
        await limiter.record_sent("1-555-010-2030", T0)

        assert await limiter.can_send(PHONE, T0) is False

    @pytest.mark.asyncio
    async def test_resets_on_new_local_day(self, limiter: SmsRateLimiter) -> None:
        await limiter.record_sent(PHONE, T0)
        await limiter.record_sent(PHONE, T0)

        # 00:30 New York the next day
        tomorrow = T0.replace(hour=5, minute=30) + timedelta(days=1)

        assert await limiter.can_send(PHONE, tomorrow) is True

    @pytest.mark.asyncio
    async def test_disabled_always_allows(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        limiter = SmsRateLimiter(session_factory, SmsLimitConfig(enabled=False, max_per_day=1))
        await limiter.record_sent(PHONE, T0)

        assert await limiter.can_send(PHONE, T0) is True

    @pytest.mark.asyncio
    async def test_numbers_at_limit(self, limiter: SmsRateLimiter) -> None:
        await limiter.record_sent(PHONE, T0)
        await limiter.record_sent(PHONE, T0)
        await limiter.record_sent("+15550109999", T0)

        assert await limiter.numbers_at_limit(T0) == [PHONE]

    @pytest.mark.asyncio
    async def test_purge_before(self, limiter: SmsRateLimiter) -> None:
        await limiter.record_sent(PHONE, T0 - timedelta(days=10))
        await limiter.record_sent(PHONE, T0)

        removed = await limiter.purge_before(T0, keep_days=7)

        assert removed == 1
        assert await limiter.count_today(PHONE, T0) == 1


class TestFailSafe:
    @pytest.mark.asyncio
    async def test_read_failure_blocks_all_sends(self, limiter: SmsRateLimiter) -> None:
        error = OperationalError("SELECT", {}, Exception("disk I/O error"))
        with patch.object(limiter, "count_today", side_effect=error):
            assert await limiter.can_send(PHONE, T0) is False

        assert limiter.failsafe_active is True
        assert await limiter.can_send("+15550109999", T0) is False

        limiter.reset_failsafe()

        assert await limiter.can_send("+15550109999", T0) is True

    @pytest.mark.asyncio
    async def test_write_failure_trips_fail_safe(self, limiter: SmsRateLimiter) -> None:
        error = OperationalError("INSERT", {}, Exception("database is locked"))
        with patch.object(AsyncSession, "commit", side_effect=error):
            with pytest.raises(OperationalError):
                await limiter.record_sent(PHONE, T0)

        assert limiter.failsafe_active is True
