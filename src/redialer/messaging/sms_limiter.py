"""
Daily per-number limiter for outbound text messages.

Counts are persisted so a restart cannot reset a number's allowance. If the
counter store fails, the limiter trips a fail-safe and refuses every send
until an operator resets it: an unknown count is treated as "over the limit".
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from redialer.messaging.config import SmsLimitConfig
from redialer.messaging.models import SmsSendCounter
from redialer.shared.locks import AsyncKeyedLock
from redialer.shared.logging import get_logger
from redialer.shared.phone import normalize_phone

logger = get_logger(__name__)


class SmsRateLimiter:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: SmsLimitConfig | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config or SmsLimitConfig()
        self._tz = ZoneInfo(self._config.timezone)
        self._locks = AsyncKeyedLock()
        self._failsafe_reason: str | None = None

    @property
    def failsafe_active(self) -> bool:
        return self._failsafe_reason is not None

    def reset_failsafe(self) -> None:
        if self._failsafe_reason is not None:
            logger.info("SMS limiter fail-safe reset", extra={"reason": self._failsafe_reason})
        self._failsafe_reason = None

    def _local_date(self, now: datetime) -> date:
        return now.astimezone(self._tz).date()

    async def count_today(self, phone: str, now: datetime) -> int:
        key = normalize_phone(phone)
        async with self._session_factory() as session:
            row = await session.get(SmsSendCounter, (key, self._local_date(now)))
            return row.sent_count if row is not None else 0

    async def can_send(self, phone: str, now: datetime) -> bool:
        """True when ``phone`` is under today's allowance."""
        if not self._config.enabled:
            return True
        if self.failsafe_active:
            logger.warning(
                "SMS blocked by fail-safe",
                extra={"phone_number": phone, "reason": self._failsafe_reason},
            )
            return False
        try:
            count = await self.count_today(phone, now)
        except SQLAlchemyError as exc:
            self._trip(f"read failed: {exc}")
            return False
        allowed = count < self._config.max_per_day
        if not allowed:
            logger.info(
                "SMS daily limit reached",
                extra={"phone_number": phone, "count": count, "limit": self._config.max_per_day},
            )
        return allowed

    async def record_sent(self, phone: str, now: datetime) -> int:
        """Count one sent text; returns today's total for the number.

        Raises:
            SQLAlchemyError: the counter could not be persisted (fail-safe tripped).
        """
        key = normalize_phone(phone)
        async with self._locks.hold(key):
            return await self._increment(key, now)

    async def try_acquire(self, phone: str, now: datetime) -> bool:
        """Check and count in one step; the send is allowed when this returns True."""
        key = normalize_phone(phone)
        async with self._locks.hold(key):
            if not await self.can_send(key, now):
                return False
            try:
                await self._increment(key, now)
            except SQLAlchemyError:
                return False
        return True

    async def _increment(self, key: str, now: datetime) -> int:
        today = self._local_date(now)
        async with self._session_factory() as session:
            try:
                row = await session.get(SmsSendCounter, (key, today))
                if row is None:
                    row = SmsSendCounter(
                        phone_number=key,
                        local_date=today,
                        sent_count=0,
                        first_sent_at=now,
                        last_sent_at=now,
                    )
                    session.add(row)
                row.sent_count += 1
                row.last_sent_at = now
                count = row.sent_count
                await session.commit()
                return count
            except SQLAlchemyError as exc:
                await session.rollback()
                self._trip(f"write failed: {exc}")
                raise

    async def purge_before(self, now: datetime, keep_days: int = 7) -> int:
        cutoff = self._local_date(now) - timedelta(days=keep_days)
        async with self._session_factory() as session:
            result = await session.execute(
                delete(SmsSendCounter).where(SmsSendCounter.local_date < cutoff)
            )
            await session.commit()
            return int(result.rowcount or 0)

    async def numbers_at_limit(self, now: datetime) -> list[str]:
        stmt = select(SmsSendCounter.phone_number).where(
            SmsSendCounter.local_date == self._local_date(now),
            SmsSendCounter.sent_count >= self._config.max_per_day,
        )
        async with self._session_factory() as session:
            return [str(p) for p in (await session.execute(stmt)).scalars().all()]

    def _trip(self, reason: str) -> None:
        self._failsafe_reason = reason
        logger.error("SMS limiter fail-safe tripped; blocking all sends", extra={"reason": reason})
