"""
Tests for the pending-attempt registry.
"""

from datetime import timedelta

from conftest import PHONE, T0
from redialer.calls.registry import PendingAttemptRegistry


class TestPendingAttemptRegistry:
    def test_register_then_resolve_once(self) -> None:
        registry = PendingAttemptRegistry()
        registry.register("a1", "P1", "555 010 2030", T0)

        entry = registry.resolve("a1")

        assert entry is not None
        assert entry.prospect_id == "P1"
        assert entry.phone_number == PHONE
        assert registry.resolve("a1") is None
        assert len(registry) == 0

    def test_resolve_unknown_returns_none(self) -> None:
        assert PendingAttemptRegistry().resolve("nope") is None

    def test_reregister_keeps_first_entry(self) -> None:
        registry = PendingAttemptRegistry()
        registry.register("a1", "P1", PHONE, T0)
        registry.register("a1", "P2", PHONE, T0 + timedelta(seconds=1))

        entry = registry.get("a1")
        assert entry is not None
        assert entry.prospect_id == "P1"
        assert "a1" in registry

    def test_sweep_removes_only_stale_entries(self) -> None:
        registry = PendingAttemptRegistry()
        registry.register("old", "P1", PHONE, T0)
        registry.register("new", "P2", "+15550109999", T0 + timedelta(minutes=60))

        swept = registry.sweep_stale(T0 + timedelta(minutes=90), timedelta(minutes=90))

        assert [e.attempt_id for e in swept] == ["old"]
        assert "old" not in registry
        assert "new" in registry
