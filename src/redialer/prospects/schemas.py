"""
Request/response schemas for the prospect retry record API.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from redialer.prospects.models import ProspectRetryRecord, RecordStatus


class EnqueueRequest(BaseModel):
    """Inbound prospect to start redialing."""

    prospect_id: str = Field(..., min_length=1, max_length=64)
    phone_number: str = Field(..., min_length=1, max_length=32)
    list_id: str | None = Field(default=None, max_length=64)
    first_name: str | None = Field(default=None, max_length=255)
    last_name: str | None = Field(default=None, max_length=255)


class RetryRecordResponse(BaseModel):
    prospect_id: str
    phone_number: str
    list_id: str | None
    status: RecordStatus
    attempt_count: int
    attempts_today: int
    last_attempt_at: datetime | None
    next_eligible_at: datetime | None
    last_outcome: str | None
    outcome_count: int

    @classmethod
    def from_record(cls, record: ProspectRetryRecord) -> "RetryRecordResponse":
        return cls(
            prospect_id=record.prospect_id,
            phone_number=record.phone_number,
            list_id=record.list_id,
            status=record.status,
            attempt_count=record.attempt_count,
            attempts_today=record.attempts_today,
            last_attempt_at=record.last_attempt_at,
            next_eligible_at=record.next_eligible_at,
            last_outcome=record.last_outcome,
            outcome_count=len(record.outcome_history),
        )
