"""
Tests for the business-hours window.
"""

from datetime import datetime, time, timedelta, timezone

from conftest import T0
from redialer.calls.business_hours import BusinessHours
from redialer.calls.config import BusinessHoursConfig


def test_weekday_inside_window() -> None:
    hours = BusinessHours(BusinessHoursConfig(start=time(9, 0), end=time(17, 0)))

    assert hours.is_open(T0) is True
    # 17:00 New York is closed
    assert hours.is_open(T0.replace(hour=22)) is False
    # 08:59 New York
    assert hours.is_open(T0.replace(hour=13, minute=59)) is False


def test_weekend_closed() -> None:
    hours = BusinessHours(BusinessHoursConfig())

    assert hours.is_open(T0 + timedelta(days=5)) is False


def test_window_crossing_midnight() -> None:
    hours = BusinessHours(
        BusinessHoursConfig(timezone="UTC", start=time(22, 0), end=time(2, 0), days=[1])
    )
    monday_late = datetime(2024, 3, 4, 23, 0, tzinfo=timezone.utc)
    tuesday_early = datetime(2024, 3, 5, 1, 0, tzinfo=timezone.utc)
    tuesday_late = datetime(2024, 3, 5, 23, 0, tzinfo=timezone.utc)

    assert hours.is_open(monday_late) is True
    assert hours.is_open(tuesday_early) is True
    assert hours.is_open(tuesday_late) is False


def test_disabled_is_always_open() -> None:
    hours = BusinessHours(BusinessHoursConfig(enabled=False))

    assert hours.is_open(T0 + timedelta(days=5)) is True
