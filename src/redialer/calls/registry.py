"""
Pending-attempt registry.

Process-lifetime map from attempt id to the prospect and number it was
dispatched for. It is the only correlation point between a dispatch and the
completion notification that eventually reports on it. Lookups for unknown
ids return None: notifications can be duplicated, delayed past the sweep, or
arrive after a restart.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from redialer.shared.locks import KeyedLock
from redialer.shared.logging import get_logger
from redialer.shared.phone import normalize_phone

logger = get_logger(__name__)


@dataclass(frozen=True)
class PendingAttempt:
    """In-flight attempt metadata."""

    attempt_id: str
    prospect_id: str
    phone_number: str
    dispatched_at: datetime


class PendingAttemptRegistry:
    def __init__(self) -> None:
        self._entries: dict[str, PendingAttempt] = {}
        self._locks = KeyedLock()

    def register(
        self,
        attempt_id: str,
        prospect_id: str,
        phone: str,
        now: datetime,
    ) -> PendingAttempt:
        """Track a dispatched attempt. Re-registering an id keeps the first entry."""
        entry = PendingAttempt(
            attempt_id=attempt_id,
            prospect_id=prospect_id,
            phone_number=normalize_phone(phone),
            dispatched_at=now,
        )
        with self._locks.hold(attempt_id):
            existing = self._entries.get(attempt_id)
            if existing is not None:
                logger.warning(
                    "Attempt already registered",
                    extra={"attempt_id": attempt_id, "prospect_id": existing.prospect_id},
                )
                return existing
            self._entries[attempt_id] = entry
        return entry

    def resolve(self, attempt_id: str) -> PendingAttempt | None:
        """Remove and return the entry for ``attempt_id``, or None if unknown."""
        with self._locks.hold(attempt_id):
            return self._entries.pop(attempt_id, None)

    def get(self, attempt_id: str) -> PendingAttempt | None:
        with self._locks.hold(attempt_id):
            return self._entries.get(attempt_id)

    def sweep_stale(self, now: datetime, max_age: timedelta) -> list[PendingAttempt]:
        """Remove and log every entry dispatched more than ``max_age`` ago."""
        cutoff = now - max_age
        swept: list[PendingAttempt] = []
        for attempt_id in list(self._entries):
            with self._locks.hold(attempt_id):
                entry = self._entries.get(attempt_id)
                if entry is None or entry.dispatched_at > cutoff:
                    continue
                del self._entries[attempt_id]
            swept.append(entry)
            logger.warning(
                "Abandoned pending attempt swept",
                extra={
                    "attempt_id": entry.attempt_id,
                    "prospect_id": entry.prospect_id,
                    "phone_number": entry.phone_number,
                    "dispatched_at": entry.dispatched_at.isoformat(),
                    "age_seconds": int((now - entry.dispatched_at).total_seconds()),
                },
            )
        return swept

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, attempt_id: object) -> bool:
        return attempt_id in self._entries
