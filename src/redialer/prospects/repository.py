"""
Repository for prospect retry records.

Records are addressed by (prospect id, phone number) and partitioned by
origination month. Partitioning stays inside the repository: callers only
see keyed access, candidate selection and a partition scan.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any, Protocol
from zoneinfo import ZoneInfo

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from redialer.prospects.models import (
    OutcomeEntry,
    ProspectRetryRecord,
    ProspectRetryRecordRow,
    RecordStatus,
    partition_month,
)
from redialer.shared.locks import AsyncKeyedLock
from redialer.shared.logging import get_logger

logger = get_logger(__name__)


class PersistenceError(Exception):
    """Base exception for persistence errors."""


class RecordNotFoundError(PersistenceError):
    """No retry record for the requested key."""

    def __init__(self, prospect_id: str, phone_number: str) -> None:
        super().__init__(f"No retry record for prospect {prospect_id} / {phone_number}")
        self.prospect_id = prospect_id
        self.phone_number = phone_number


class ProspectRecordRepository(Protocol):
    """Storage contract the scheduler depends on."""

    async def get(self, prospect_id: str, phone_number: str) -> ProspectRetryRecord | None:
        ...

    async def save(self, record: ProspectRetryRecord) -> ProspectRetryRecord:
        ...

    async def delete(self, prospect_id: str, phone_number: str) -> bool:
        ...

    async def list_candidates(
        self,
        statuses: Iterable[RecordStatus],
        created_since: datetime,
    ) -> list[ProspectRetryRecord]:
        ...

    async def scan_partition(self, month: str) -> list[ProspectRetryRecord]:
        ...

    async def find_by_phone(self, phone_number: str) -> list[ProspectRetryRecord]:
        ...

    async def count_by_status(self) -> dict[str, int]:
        ...

    async def purge_created_before(self, cutoff: datetime) -> int:
        ...


def _utc(value: datetime | None) -> datetime | None:
    """Store and compare in UTC; drivers without tz support hand back naive values."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _sort_key(record: ProspectRetryRecord) -> tuple[Any, ...]:
    return (_utc(record.created_at), record.prospect_id, record.phone_number)


class SqlProspectRecordRepository:
    """SQLAlchemy-backed repository; one partition lock per origination month."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        timezone_name: str = "America/New_York",
    ) -> None:
        self._session_factory = session_factory
        self._tz = ZoneInfo(timezone_name)
        self._partition_locks = AsyncKeyedLock()

    async def get(self, prospect_id: str, phone_number: str) -> ProspectRetryRecord | None:
        async with self._session_factory() as session:
            row = await session.get(ProspectRetryRecordRow, (prospect_id, phone_number))
            return self._to_domain(row) if row is not None else None

    async def save(self, record: ProspectRetryRecord) -> ProspectRetryRecord:
        partition = partition_month(record.created_at, self._tz)
        async with self._partition_locks.hold(partition):
            async with self._session_factory() as session:
                try:
                    row = await session.get(
                        ProspectRetryRecordRow, (record.prospect_id, record.phone_number)
                    )
                    if row is None:
                        row = ProspectRetryRecordRow(
                            prospect_id=record.prospect_id,
                            phone_number=record.phone_number,
                        )
                        session.add(row)
                    self._apply(row, record, partition)
                    await session.commit()
                except SQLAlchemyError:
                    await session.rollback()
                    logger.exception(
                        "Failed to persist retry record",
                        extra={"prospect_id": record.prospect_id, "partition": partition},
                    )
                    raise
        return record

    async def delete(self, prospect_id: str, phone_number: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(ProspectRetryRecordRow).where(
                    ProspectRetryRecordRow.prospect_id == prospect_id,
                    ProspectRetryRecordRow.phone_number == phone_number,
                )
            )
            await session.commit()
            return bool(result.rowcount)

    async def list_candidates(
        self,
        statuses: Iterable[RecordStatus],
        created_since: datetime,
    ) -> list[ProspectRetryRecord]:
        stmt = (
            select(ProspectRetryRecordRow)
            .where(ProspectRetryRecordRow.status.in_([s.value for s in statuses]))
            .where(ProspectRetryRecordRow.created_at >= _utc(created_since))
            .order_by(
                ProspectRetryRecordRow.created_at,
                ProspectRetryRecordRow.prospect_id,
                ProspectRetryRecordRow.phone_number,
            )
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [self._to_domain(row) for row in rows]

    async def scan_partition(self, month: str) -> list[ProspectRetryRecord]:
        stmt = (
            select(ProspectRetryRecordRow)
            .where(ProspectRetryRecordRow.partition_month == month)
            .order_by(ProspectRetryRecordRow.created_at, ProspectRetryRecordRow.prospect_id)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [self._to_domain(row) for row in rows]

    async def find_by_phone(self, phone_number: str) -> list[ProspectRetryRecord]:
        stmt = (
            select(ProspectRetryRecordRow)
            .where(ProspectRetryRecordRow.phone_number == phone_number)
            .order_by(ProspectRetryRecordRow.created_at, ProspectRetryRecordRow.prospect_id)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [self._to_domain(row) for row in rows]

    async def count_by_status(self) -> dict[str, int]:
        stmt = select(ProspectRetryRecordRow.status, func.count()).group_by(
            ProspectRetryRecordRow.status
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
            return {str(status): int(count) for status, count in rows}

    async def purge_created_before(self, cutoff: datetime) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(ProspectRetryRecordRow).where(
                    ProspectRetryRecordRow.created_at < _utc(cutoff)
                )
            )
            await session.commit()
            removed = int(result.rowcount or 0)
        if removed:
            logger.info("Purged expired retry records", extra={"removed": removed})
        return removed

    @staticmethod
    def _apply(row: ProspectRetryRecordRow, record: ProspectRetryRecord, partition: str) -> None:
        row.partition_month = partition
        row.list_id = record.list_id
        row.first_name = record.first_name
        row.last_name = record.last_name
        row.attempt_count = record.attempt_count
        row.attempts_today = record.attempts_today
        row.last_attempt_date = record.last_attempt_date
        row.last_attempt_at = _utc(record.last_attempt_at)
        row.next_eligible_at = _utc(record.next_eligible_at)
        row.outcome_history = [e.model_dump(mode="json") for e in record.outcome_history]
        row.last_outcome = record.last_outcome
        row.last_attempt_id = record.last_attempt_id
        row.status = record.status.value
        row.created_at = _utc(record.created_at)
        row.updated_at = _utc(record.updated_at)

    @staticmethod
    def _to_domain(row: ProspectRetryRecordRow) -> ProspectRetryRecord:
        return ProspectRetryRecord(
            prospect_id=row.prospect_id,
            phone_number=row.phone_number,
            list_id=row.list_id,
            first_name=row.first_name,
            last_name=row.last_name,
            attempt_count=row.attempt_count,
            attempts_today=row.attempts_today,
            last_attempt_date=row.last_attempt_date,
            last_attempt_at=_utc(row.last_attempt_at),
            next_eligible_at=_utc(row.next_eligible_at),
            outcome_history=[OutcomeEntry.model_validate(e) for e in row.outcome_history or []],
            last_outcome=row.last_outcome,
            last_attempt_id=row.last_attempt_id,
            status=RecordStatus(row.status),
            created_at=_utc(row.created_at),
            updated_at=_utc(row.updated_at),
        )


class InMemoryProspectRecordRepository:
    """Dict-backed repository keyed by partition month, then record key."""

    def __init__(self, timezone_name: str = "America/New_York") -> None:
        self._tz = ZoneInfo(timezone_name)
        self._partitions: dict[str, dict[tuple[str, str], dict[str, Any]]] = {}
        self._partition_locks = AsyncKeyedLock()

    async def get(self, prospect_id: str, phone_number: str) -> ProspectRetryRecord | None:
        for partition in self._partitions.values():
            payload = partition.get((prospect_id, phone_number))
            if payload is not None:
                return ProspectRetryRecord.from_payload(payload)
        return None

    async def save(self, record: ProspectRetryRecord) -> ProspectRetryRecord:
        month = partition_month(record.created_at, self._tz)
        async with self._partition_locks.hold(month):
            self._partitions.setdefault(month, {})[record.key] = record.to_payload()
        return record

    async def delete(self, prospect_id: str, phone_number: str) -> bool:
        for month, partition in self._partitions.items():
            if (prospect_id, phone_number) in partition:
                async with self._partition_locks.hold(month):
                    partition.pop((prospect_id, phone_number), None)
                return True
        return False

    async def list_candidates(
        self,
        statuses: Iterable[RecordStatus],
        created_since: datetime,
    ) -> list[ProspectRetryRecord]:
        wanted = set(statuses)
        since = _utc(created_since)
        records = [
            r
            for r in self._all()
            if r.status in wanted and _utc(r.created_at) >= since
        ]
        return sorted(records, key=_sort_key)

    async def scan_partition(self, month: str) -> list[ProspectRetryRecord]:
        partition = self._partitions.get(month, {})
        records = [ProspectRetryRecord.from_payload(p) for p in partition.values()]
        return sorted(records, key=_sort_key)

    async def find_by_phone(self, phone_number: str) -> list[ProspectRetryRecord]:
        return sorted(
            (r for r in self._all() if r.phone_number == phone_number),
            key=_sort_key,
        )

    async def count_by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for record in self._all():
            counts[record.status.value] = counts.get(record.status.value, 0) + 1
        return counts

    async def purge_created_before(self, cutoff: datetime) -> int:
        limit = _utc(cutoff)
        removed = 0
        for month, partition in list(self._partitions.items()):
            async with self._partition_locks.hold(month):
                for key, payload in list(partition.items()):
                    if _utc(ProspectRetryRecord.from_payload(payload).created_at) < limit:
                        del partition[key]
                        removed += 1
                if not partition:
                    self._partitions.pop(month, None)
        return removed

    def partitions(self) -> list[str]:
        return sorted(self._partitions)

    def _all(self) -> list[ProspectRetryRecord]:
        return [
            ProspectRetryRecord.from_payload(payload)
            for partition in list(self._partitions.values())
            for payload in list(partition.values())
        ]
