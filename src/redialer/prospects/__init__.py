"""Prospect retry records and their storage."""

from redialer.prospects.models import OutcomeEntry, ProspectRetryRecord, RecordStatus
from redialer.prospects.repository import (
    InMemoryProspectRecordRepository,
    ProspectRecordRepository,
    RecordNotFoundError,
    SqlProspectRecordRepository,
)

__all__ = [
    "InMemoryProspectRecordRepository",
    "OutcomeEntry",
    "ProspectRecordRepository",
    "ProspectRetryRecord",
    "RecordNotFoundError",
    "RecordStatus",
    "SqlProspectRecordRepository",
]
