"""
Tests for progressive backoff.
"""

from datetime import timedelta

import pytest

from conftest import T0
from redialer.calls.backoff import backoff_delay, next_eligible_at

TABLE = [0, 0, 5, 10, 30, 60, 120]


@pytest.mark.parametrize(
    ("attempt", "minutes"),
    [(1, 2), (2, 2), (3, 5), (4, 10), (5, 30), (6, 60), (7, 120), (12, 120)],
)
def test_backoff_delay_with_floor(attempt: int, minutes: int) -> None:
    assert backoff_delay(attempt, TABLE, floor_minutes=2) == timedelta(minutes=minutes)


def test_backoff_without_floor_allows_zero() -> None:
    assert backoff_delay(1, TABLE) == timedelta(0)


def test_next_eligible_at_adds_delay() -> None:
    assert next_eligible_at(T0, 3, TABLE, 2) == T0 + timedelta(minutes=5)


@pytest.mark.parametrize(("attempt", "table"), [(0, TABLE), (1, [])])
def test_invalid_arguments(attempt: int, table: list[int]) -> None:
    with pytest.raises(ValueError):
        backoff_delay(attempt, table)
