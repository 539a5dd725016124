"""
Attempt ledger: per phone number history of today's attempts.

The ledger is the single source of truth for two questions the scheduler asks
before every dispatch:

* is this number engaged right now (a call is live, or just ended and may
  still have the prospect on the line with an operator)?
* how many attempts has this number received today, from any origination
  path?

State is kept per phone number behind a per-number lock, so a busy number
never serializes checks against unrelated numbers.
"""

from __future__ import annotations

from collections.abc import Container
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from redialer.calls.config import LedgerConfig
from redialer.shared.locks import KeyedLock
from redialer.shared.logging import get_logger
from redialer.shared.phone import normalize_phone

logger = get_logger(__name__)


@dataclass
class LedgerAttempt:
    """One attempt against a number: open until settled."""

    attempt_id: str
    started_at: datetime
    settled_at: datetime | None = None
    transferred: bool = False
    abandoned: bool = False
    external: bool = False

    @property
    def is_open(self) -> bool:
        return self.settled_at is None


@dataclass
class LedgerEntry:
    """All attempts on one number that still matter today."""

    phone_number: str
    attempts: list[LedgerAttempt] = field(default_factory=list)
    live_attempt_id: str | None = None

    def find(self, attempt_id: str) -> LedgerAttempt | None:
        for attempt in self.attempts:
            if attempt.attempt_id == attempt_id:
                return attempt
        return None


class AttemptLedger:
    """Tracks engagement windows and daily counts per phone number."""

    def __init__(
        self,
        config: LedgerConfig | None = None,
    ) -> None:
        self._config = config or LedgerConfig()
        self._tz = ZoneInfo(self._config.timezone)
        self._transfer_margin = timedelta(minutes=self._config.transfer_safety_minutes)
        self._settle_margin = timedelta(seconds=self._config.settle_margin_seconds)
        self._entries: dict[str, LedgerEntry] = {}
        self._locks = KeyedLock()

    @property
    def timezone(self) -> ZoneInfo:
        return self._tz

    def local_day(self, t: datetime) -> date:
        return t.astimezone(self._tz).date()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def record_attempt_start(
        self,
        phone: str,
        attempt_id: str,
        t: datetime,
        *,
        external: bool = False,
    ) -> bool:
        """Append an open attempt for ``phone``.

        Returns True when another attempt on the same number was still engaged
        at ``t``; the caller treats the new attempt as an overlap.

        Raises:
            InvalidPhoneNumberError: ``phone`` is not a dialable number.
        """
        key = normalize_phone(phone)
        with self._locks.hold(key):
            entry = self._entry(key, t)
            if entry.find(attempt_id) is not None:
                logger.warning(
                    "Ledger attempt already recorded",
                    extra={"phone_number": key, "attempt_id": attempt_id},
                )
                return False

            overlapped = any(self._engaged(a, t) for a in entry.attempts)
            if overlapped:
                logger.warning(
                    "Overlapping attempt on engaged number",
                    extra={
                        "phone_number": key,
                        "attempt_id": attempt_id,
                        "live_attempt_id": entry.live_attempt_id,
                    },
                )
            entry.attempts.append(LedgerAttempt(attempt_id=attempt_id, started_at=t, external=external))
            entry.live_attempt_id = attempt_id
            return overlapped

    def record_attempt_settle(
        self,
        phone: str,
        attempt_id: str,
        t: datetime,
        *,
        transferred: bool = False,
    ) -> bool:
        """Close an attempt. Unknown ids are logged and reported as False."""
        key = normalize_phone(phone)
        with self._locks.hold(key):
            entry = self._entries.get(key)
            attempt = entry.find(attempt_id) if entry else None
            if attempt is None:
                logger.warning(
                    "Settle for unknown ledger attempt",
                    extra={"phone_number": key, "attempt_id": attempt_id},
                )
                return False

            if attempt.settled_at is None or attempt.abandoned or t > attempt.settled_at:
                attempt.settled_at = t
            attempt.transferred = attempt.transferred or transferred
            attempt.abandoned = False
            if entry.live_attempt_id == attempt_id:
                entry.live_attempt_id = None
            return True

    def close_open_attempts(
        self,
        phone: str,
        t: datetime,
        *,
        transferred: bool = False,
        exclude: Container[str] = (),
    ) -> int:
        """Best-effort close of every open attempt on ``phone``.

        Used when a completion cannot be matched to an attempt id but still
        names the number it was for. Attempt ids in ``exclude`` (still known
        to be in flight) stay open.
        """
        key = normalize_phone(phone)
        closed = 0
        with self._locks.hold(key):
            entry = self._entries.get(key)
            if entry is None:
                return 0
            for attempt in entry.attempts:
                if attempt.is_open and attempt.attempt_id not in exclude:
                    attempt.settled_at = t
                    attempt.transferred = attempt.transferred or transferred
                    closed += 1
            if entry.live_attempt_id not in exclude:
                entry.live_attempt_id = None
        if closed:
            logger.info(
                "Closed open attempts by phone number",
                extra={"phone_number": key, "closed": closed},
            )
        return closed

    def record_attempt_abandoned(self, phone: str, attempt_id: str, t: datetime) -> bool:
        """Close a swept attempt. It stays counted for the day."""
        key = normalize_phone(phone)
        with self._locks.hold(key):
            entry = self._entries.get(key)
            attempt = entry.find(attempt_id) if entry else None
            if attempt is None:
                return False
            if attempt.is_open:
                attempt.settled_at = t
                attempt.abandoned = True
            if entry.live_attempt_id == attempt_id:
                entry.live_attempt_id = None
            return True

    def restore_attempt(self, phone: str, attempt_id: str, started_at: datetime) -> None:
        """Seed an already-closed attempt, e.g. rebuilt from persisted records at startup."""
        key = normalize_phone(phone)
        with self._locks.hold(key):
            entry = self._entry(key, started_at)
            if entry.find(attempt_id) is None:
                entry.attempts.append(
                    LedgerAttempt(attempt_id=attempt_id, started_at=started_at, settled_at=started_at)
                )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_engaged(self, phone: str, now: datetime) -> bool:
        key = normalize_phone(phone)
        with self._locks.hold(key):
            entry = self._entries.get(key)
            if entry is None:
                return False
            return any(self._engaged(a, now) for a in entry.attempts)

    def count_today(self, phone: str, now: datetime) -> int:
        key = normalize_phone(phone)
        today = self.local_day(now)
        with self._locks.hold(key):
            entry = self._entries.get(key)
            if entry is None:
                return 0
            return sum(1 for a in entry.attempts if self.local_day(a.started_at) == today)

    def live_attempt_id(self, phone: str) -> str | None:
        key = normalize_phone(phone)
        with self._locks.hold(key):
            entry = self._entries.get(key)
            return entry.live_attempt_id if entry else None

    def tracked_numbers(self) -> int:
        return len(self._entries)

    def open_attempts(self) -> int:
        return sum(
            1 for entry in list(self._entries.values()) for a in list(entry.attempts) if a.is_open
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _window_end(self, attempt: LedgerAttempt) -> datetime | None:
        if attempt.settled_at is None:
            return None
        if attempt.abandoned:
            return attempt.settled_at
        margin = self._transfer_margin if attempt.transferred else self._settle_margin
        return attempt.settled_at + margin

    def _engaged(self, attempt: LedgerAttempt, now: datetime) -> bool:
        if attempt.started_at > now:
            return False
        end = self._window_end(attempt)
        return end is None or now < end

    def _entry(self, key: str, now: datetime) -> LedgerEntry:
        """Fetch-or-create the entry, dropping attempts from earlier days.

        Caller holds the key lock. An attempt from yesterday that is still
        engaged survives the rollover so it keeps blocking the number.
        """
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = LedgerEntry(phone_number=key)
            return entry
        today = self.local_day(now)
        entry.attempts = [
            a
            for a in entry.attempts
            if self.local_day(a.started_at) >= today or self._engaged(a, now)
        ]
        return entry

    def prune(self, now: datetime) -> int:
        """Drop numbers with nothing left to remember for today."""
        removed = 0
        for key in list(self._entries):
            with self._locks.hold(key):
                entry = self._entries.get(key)
                if entry is None:
                    continue
                entry = self._entry(key, now)
                if not entry.attempts:
                    self._entries.pop(key, None)
                    removed += 1
        return removed
