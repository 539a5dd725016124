"""
Attempt-indexed progressive backoff.
"""

from collections.abc import Sequence
from datetime import datetime, timedelta


def backoff_delay(
    attempt_number: int,
    table_minutes: Sequence[int],
    floor_minutes: int = 0,
) -> timedelta:
    """Wait after attempt ``attempt_number`` (1-based).

    Attempt k reads ``table[k-1]``; past the end of the table the last entry
    repeats. The floor applies even where the table says zero, so a completion
    that lands a moment after dispatch never meets an already-eligible record.
    """
    if attempt_number < 1:
        raise ValueError("attempt_number must be >= 1")
    if not table_minutes:
        raise ValueError("backoff table must not be empty")
    index = min(attempt_number - 1, len(table_minutes) - 1)
    return timedelta(minutes=max(floor_minutes, table_minutes[index]))


def next_eligible_at(
    dispatched_at: datetime,
    attempt_number: int,
    table_minutes: Sequence[int],
    floor_minutes: int = 0,
) -> datetime:
    return dispatched_at + backoff_delay(attempt_number, table_minutes, floor_minutes)
