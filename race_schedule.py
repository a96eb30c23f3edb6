"""
race_schedule.py — In-memory schedule of races waiting for their alert.

A race is ``Pending`` while it sits in the store, ``Alerted`` once its key is
in the alerted set, and gone once it started more than the grace window ago.

Duplicate rule (applied on insert and by the post-batch sweep):
  - same identifier, start times within ``SAME_ID_TOLERANCE``
  - same real display name, start times within ``SAME_NAME_TOLERANCE``
  - identical ``(identifier, scheduled_at)`` key
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)

UNKNOWN_RACE_NAME = "Unknown Race"

SAME_ID_TOLERANCE = timedelta(minutes=2)
SAME_NAME_TOLERANCE = timedelta(minutes=5)


@dataclass(frozen=True)
class EventRecord:
    """One tracked race."""

    identifier:   str
    scheduled_at: datetime
    display_name: str = UNKNOWN_RACE_NAME
    added_at:     datetime | None = field(default=None, compare=False)

    @property
    def key(self) -> tuple[str, datetime]:
        return (self.identifier, self.scheduled_at)

    @property
    def has_real_name(self) -> bool:
        return bool(self.display_name) and self.display_name != UNKNOWN_RACE_NAME

    def minutes_until(self, now: datetime) -> float:
        return (self.scheduled_at - now).total_seconds() / 60


def is_duplicate(a: EventRecord, b: EventRecord) -> bool:
    """True if ``a`` and ``b`` describe the same race."""
    if a.key == b.key:
        return True
    gap = abs(a.scheduled_at - b.scheduled_at)
    if a.identifier == b.identifier and gap <= SAME_ID_TOLERANCE:
        return True
    if (
        a.has_real_name
        and b.has_real_name
        and a.display_name.casefold() == b.display_name.casefold()
        and gap <= SAME_NAME_TOLERANCE
    ):
        return True
    return False


class ScheduleStore:
    """Owns the tracked races and the set of races already alerted."""

    def __init__(self) -> None:
        self._records: list[EventRecord] = []
        self._alerted: set[tuple[str, datetime]] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    @property
    def alerted_count(self) -> int:
        with self._lock:
            return len(self._alerted)

    # ── Mutation ──────────────────────────────────────────────────────────────

    def insert(self, candidate: EventRecord, now: datetime) -> bool:
        """Add ``candidate`` unless it is in the past or already tracked."""
        if candidate.scheduled_at <= now:
            logger.debug("Rejected %s: start time %s is not in the future.",
                         candidate.identifier, candidate.scheduled_at.isoformat())
            return False
        with self._lock:
            for existing in self._records:
                if is_duplicate(existing, candidate):
                    logger.debug("Rejected %s at %s: duplicate of %s at %s.",
                                 candidate.identifier, candidate.scheduled_at.isoformat(),
                                 existing.identifier, existing.scheduled_at.isoformat())
                    return False
            self._records.append(candidate)
        logger.info("Tracking %s (%s) at %s.",
                    candidate.identifier, candidate.display_name,
                    candidate.scheduled_at.isoformat())
        return True

    def dedupe_all(self) -> int:
        """Drop every record that duplicates an earlier kept one."""
        with self._lock:
            kept: list[EventRecord] = []
            removed = 0
            for record in self._records:
                if any(is_duplicate(k, record) for k in kept):
                    self._alerted.discard(record.key)
                    removed += 1
                    continue
                kept.append(record)
            self._records = kept
        if removed:
            logger.info("Dedup sweep removed %d duplicate race(s).", removed)
        return removed

    def mark_alerted(self, record: EventRecord) -> bool:
        """
        Remember that ``record`` was alerted.  A record that was cleared or
        expired while its alert was in flight is not marked, so a later
        re-ingest of the same race alerts again.
        """
        with self._lock:
            if not any(r is record for r in self._records):
                logger.debug("Not marking %s: no longer tracked.", record.identifier)
                return False
            self._alerted.add(record.key)
            return True

    def expire_stale(self, now: datetime, grace_minutes: float) -> list[EventRecord]:
        """Remove races that started more than ``grace_minutes`` ago."""
        grace = timedelta(minutes=grace_minutes)
        with self._lock:
            expired = [r for r in self._records if now - r.scheduled_at > grace]
            if not expired:
                return []
            self._records = [r for r in self._records if now - r.scheduled_at <= grace]
            for record in expired:
                self._alerted.discard(record.key)
        for record in expired:
            logger.info("Expired race %s (started %s).",
                        record.identifier, record.scheduled_at.isoformat())
        return expired

    def clear_all(self) -> int:
        with self._lock:
            count = len(self._records)
            self._records.clear()
            self._alerted.clear()
        logger.info("Cleared %d tracked race(s).", count)
        return count

    # ── Queries ───────────────────────────────────────────────────────────────

    def is_alerted(self, record: EventRecord) -> bool:
        with self._lock:
            return record.key in self._alerted

    def due_for_alert(self, now: datetime, lead_minutes: float) -> list[EventRecord]:
        """Races starting within ``lead_minutes`` that have not been alerted."""
        with self._lock:
            return [
                r for r in self._records
                if 0 < r.minutes_until(now) <= lead_minutes
                and r.key not in self._alerted
            ]

    def upcoming(self) -> list[EventRecord]:
        """All tracked races, soonest first."""
        with self._lock:
            return sorted(self._records, key=lambda r: r.scheduled_at)
