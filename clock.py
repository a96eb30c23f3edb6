"""
clock.py — The bot's single source of "now".

Every temporal decision (race resolution, alert windows, baseline capture)
goes through a clock so it can be pinned in tests.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import config


class Clock:
    """Wall clock in a fixed named timezone."""

    def __init__(self, tz_name: str = config.TIMEZONE):
        self.tz = ZoneInfo(tz_name)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def localize(self, dt: datetime) -> datetime:
        return dt.astimezone(self.tz)

    def format_local(self, dt: datetime, fmt: str = "%H:%M") -> str:
        return self.localize(dt).strftime(fmt)


class FixedClock(Clock):
    """A clock that only moves when told to."""

    def __init__(self, instant: datetime, tz_name: str = config.TIMEZONE):
        super().__init__(tz_name)
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=self.tz)
        self._now = instant

    def now(self) -> datetime:
        return self._now

    def set(self, instant: datetime) -> None:
        self._now = instant

    def advance(self, **delta) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now
