"""
Business-hours window check.
"""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from redialer.calls.config import BusinessHoursConfig


class BusinessHours:
    """Answers whether ``now`` falls inside the configured local dispatch window."""

    def __init__(self, config: BusinessHoursConfig | None = None) -> None:
        self._config = config or BusinessHoursConfig()
        self._tz = ZoneInfo(self._config.timezone)

    @property
    def timezone(self) -> ZoneInfo:
        return self._tz

    def is_open(self, now: datetime) -> bool:
        if not self._config.enabled:
            return True
        local = now.astimezone(self._tz)
        start, end = self._config.start, self._config.end
        current = local.time()
        if start <= end:
            return local.isoweekday() in self._config.days and start <= current < end
        # Window crosses midnight: the early-morning part belongs to the previous day.
        if current >= start:
            return local.isoweekday() in self._config.days
        if current < end:
            return (local - timedelta(days=1)).isoweekday() in self._config.days
        return False
