"""
Tests for the rate governor.
"""

from datetime import timedelta

from conftest import PHONE, T0
from redialer.calls.config import GovernorConfig
from redialer.calls.governor import RateGovernor


def test_try_acquire_enforces_per_second_ceiling() -> None:
    governor = RateGovernor(GovernorConfig(max_per_second=2))

    assert governor.try_acquire(T0) is True
    assert governor.try_acquire(T0 + timedelta(milliseconds=100)) is True
    assert governor.try_acquire(T0 + timedelta(milliseconds=200)) is False
    assert governor.try_acquire(T0 + timedelta(seconds=1)) is True


def test_same_number_spacing() -> None:
    governor = RateGovernor(GovernorConfig(same_number_spacing_seconds=120))
    governor.record_attempt("5550102030", T0)

    assert governor.too_soon_for_number(PHONE, T0 + timedelta(seconds=119)) is True
    assert governor.too_soon_for_number(PHONE, T0 + timedelta(seconds=120)) is False
    assert governor.too_soon_for_number("+15550109999", T0) is False


def test_record_attempt_keeps_latest_time() -> None:
    governor = RateGovernor(GovernorConfig(same_number_spacing_seconds=120))
    governor.record_attempt(PHONE, T0 + timedelta(minutes=5))
    governor.record_attempt(PHONE, T0)

    assert governor.too_soon_for_number(PHONE, T0 + timedelta(minutes=6)) is True


def test_disabled_governor_admits_everything() -> None:
    governor = RateGovernor(GovernorConfig(enabled=False, max_per_second=1))
    governor.record_attempt(PHONE, T0)

    assert all(governor.try_acquire(T0) for _ in range(10))
    assert governor.too_soon_for_number(PHONE, T0) is False


def test_prune_forgets_elapsed_numbers() -> None:
    governor = RateGovernor(GovernorConfig(same_number_spacing_seconds=120))
    governor.record_attempt(PHONE, T0)

    assert governor.prune(T0 + timedelta(seconds=60)) == 0
    assert governor.prune(T0 + timedelta(seconds=120)) == 1
