"""
Rate governor: global attempts-per-second ceiling plus same-number spacing.

Both checks are advisory gates. A refusal never raises; the scheduler simply
defers the record. The sliding windows are in memory only, so a restart
briefly under-enforces spacing.
"""

from __future__ import annotations

import threading
from collections import deque
from datetime import datetime, timedelta

from redialer.calls.config import GovernorConfig
from redialer.shared.locks import KeyedLock
from redialer.shared.logging import get_logger
from redialer.shared.phone import normalize_phone

logger = get_logger(__name__)

_WINDOW = timedelta(seconds=1)


class RateGovernor:
    """Sliding one-second admission window and per-number minimum spacing."""

    def __init__(self, config: GovernorConfig | None = None) -> None:
        self._config = config or GovernorConfig()
        self._spacing = timedelta(seconds=self._config.same_number_spacing_seconds)
        self._admissions: deque[datetime] = deque()
        self._admission_lock = threading.Lock()
        self._last_attempt: dict[str, datetime] = {}
        self._locks = KeyedLock()

    def try_acquire(self, now: datetime) -> bool:
        """Admit one attempt if fewer than N were admitted in the trailing second."""
        if not self._config.enabled:
            return True
        with self._admission_lock:
            horizon = now - _WINDOW
            while self._admissions and self._admissions[0] <= horizon:
                self._admissions.popleft()
            if len(self._admissions) >= self._config.max_per_second:
                logger.debug(
                    "Rate ceiling reached",
                    extra={"admitted": len(self._admissions), "limit": self._config.max_per_second},
                )
                return False
            self._admissions.append(now)
            return True

    def too_soon_for_number(self, phone: str, now: datetime) -> bool:
        if not self._config.enabled or not self._spacing:
            return False
        key = normalize_phone(phone)
        with self._locks.hold(key):
            last = self._last_attempt.get(key)
        return last is not None and now - last < self._spacing

    def record_attempt(self, phone: str, t: datetime) -> None:
        """Note that ``phone`` received an attempt at ``t`` (any origination path)."""
        key = normalize_phone(phone)
        with self._locks.hold(key):
            last = self._last_attempt.get(key)
            if last is None or t > last:
                self._last_attempt[key] = t

    def prune(self, now: datetime) -> int:
        """Forget numbers whose spacing window has fully elapsed."""
        removed = 0
        for key in list(self._last_attempt):
            with self._locks.hold(key):
                last = self._last_attempt.get(key)
                if last is not None and now - last >= self._spacing:
                    self._last_attempt.pop(key, None)
                    removed += 1
        return removed
