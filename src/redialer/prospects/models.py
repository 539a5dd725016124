"""
Prospect retry records: domain model and SQLAlchemy row.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import JSON, Date, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from redialer.shared.database import Base


class RecordStatus(str, Enum):
    """Retry record lifecycle status."""

    NEW = "new"
    PENDING = "pending"
    RESCHEDULED = "rescheduled"
    COMPLETED = "completed"
    DAILY_CAP_REACHED = "daily_cap_reached"
    MAX_ATTEMPTS_REACHED = "max_attempts_reached"
    PAUSED = "paused"
    QUARANTINED = "quarantined"
    BAD_NUMBER = "bad_number"


# Statuses the redial cycle picks up. daily_cap_reached is re-derived each cycle.
SELECTABLE_STATUSES = frozenset(
    {
        RecordStatus.NEW,
        RecordStatus.PENDING,
        RecordStatus.RESCHEDULED,
        RecordStatus.DAILY_CAP_REACHED,
    }
)

# Statuses a completion notification may no longer move.
FROZEN_STATUSES = frozenset(
    {
        RecordStatus.COMPLETED,
        RecordStatus.MAX_ATTEMPTS_REACHED,
        RecordStatus.PAUSED,
        RecordStatus.QUARANTINED,
        RecordStatus.BAD_NUMBER,
    }
)


class OutcomeEntry(BaseModel):
    """One line of a record's append-only outcome history."""

    model_config = ConfigDict(frozen=True)

    attempt_id: str | None = None
    outcome: str
    outcome_class: str | None = None
    crm_status: str | None = None
    recorded_at: datetime
    informational: bool = False
    note: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ProspectRetryRecord(BaseModel):
    """Retry state for one (prospect id, phone number) pair."""

    model_config = ConfigDict(validate_assignment=True)

    prospect_id: str
    phone_number: str
    list_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    attempt_count: int = Field(default=0, ge=0)
    attempts_today: int = Field(default=0, ge=0)
    last_attempt_date: date | None = None
    last_attempt_at: datetime | None = None
    next_eligible_at: datetime | None = None
    outcome_history: list[OutcomeEntry] = Field(default_factory=list)
    last_outcome: str | None = None
    last_attempt_id: str | None = None
    status: RecordStatus = RecordStatus.NEW
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> tuple[str, str]:
        return (self.prospect_id, self.phone_number)

    def roll_day(self, today: date) -> bool:
        """Reset attempts_today the first time the record is touched on a new local day.

        Returns True when the counter changed and the record needs saving.
        """
        if self.last_attempt_date is None or self.last_attempt_date == today:
            return False
        if self.attempts_today == 0:
            return False
        self.attempts_today = 0
        return True

    def append_outcome(self, entry: OutcomeEntry) -> None:
        self.outcome_history = [*self.outcome_history, entry]

    def has_outcome_for(self, attempt_id: str) -> bool:
        return any(
            e.attempt_id == attempt_id and e.outcome_class is not None for e in self.outcome_history
        )

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ProspectRetryRecord":
        return cls.model_validate(payload)


def partition_month(created_at: datetime, tz: Any = timezone.utc) -> str:
    """Origination month partition key, ``YYYY-MM`` in the given timezone."""
    return created_at.astimezone(tz).strftime("%Y-%m")


class ProspectRetryRecordRow(Base):
    """Persisted retry record, one row per (prospect id, phone number)."""

    __tablename__ = "prospect_retry_records"

    prospect_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    phone_number: Mapped[str] = mapped_column(String(32), primary_key=True)
    partition_month: Mapped[str] = mapped_column(String(7), nullable=False, index=True)
    list_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    attempts_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_eligible_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    outcome_history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    last_outcome: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_attempt_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=RecordStatus.NEW.value,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<ProspectRetryRecordRow(prospect_id={self.prospect_id}, "
            f"phone={self.phone_number}, status={self.status})>"
        )
