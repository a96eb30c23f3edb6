"""Test helpers shared across modules."""
from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

TZ = ZoneInfo("Australia/Melbourne")


def at(hour: int, minute: int = 0, second: int = 0, day: int = 10) -> datetime:
    """An instant on 2026-03-<day> in Melbourne time."""
    return datetime(2026, 3, day, hour, minute, second, tzinfo=TZ)


class RecordingSender:
    """Stand-in for the Telegram sender; remembers every message."""

    def __init__(self, results=None):
        self.messages: list[str] = []
        self._results = list(results or [])

    def __call__(self, text: str) -> bool:
        self.messages.append(text)
        if self._results:
            result = self._results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return True
