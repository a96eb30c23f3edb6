"""
ingestion.py — Turn the vision oracle's race list into tracked races.

The oracle's JSON is untrusted: it may use ``races`` or the older
``raceTimes`` key, carry numbers as strings, or omit fields entirely.  It is
coerced into ``RaceDescriptor`` objects here and never travels further in
its raw shape.

Start-time resolution order for each descriptor:
  1. countdown seconds, countdown minutes, minutes-until-race (first positive
     one wins) added to now
  2. an ``HH:MM`` clock time today, rolled to tomorrow if already passed
  3. otherwise the descriptor is dropped
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable

from clock import Clock
from race_schedule import UNKNOWN_RACE_NAME, EventRecord, ScheduleStore

logger = logging.getLogger(__name__)

MAX_LOOKAHEAD = timedelta(hours=24)

_CLOCK_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::(\d{2}))?\s*$")


@dataclass(frozen=True)
class RaceDescriptor:
    """One race as reported by the oracle, after type coercion."""

    identifier:         str
    display_name:       str = UNKNOWN_RACE_NAME
    clock_time:         str | None = None
    countdown_seconds:  float | None = None
    countdown_minutes:  float | None = None
    minutes_until_race: float | None = None


# ── Payload coercion ─────────────────────────────────────────────────────────

def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (str, int, float)):
        return str(value).strip()
    return ""


def _positive_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def _descriptor_from_dict(raw: dict) -> RaceDescriptor | None:
    name = (
        _text(raw.get("name"))
        or _text(raw.get("raceName"))
        or _text(raw.get("original"))
    )
    identifier = _text(raw.get("race")) or _text(raw.get("track")) or name
    if not identifier:
        return None
    return RaceDescriptor(
        identifier=identifier,
        display_name=name or UNKNOWN_RACE_NAME,
        clock_time=_text(raw.get("time")) or None,
        countdown_seconds=_positive_number(raw.get("countdownSeconds")),
        countdown_minutes=_positive_number(raw.get("countdownMinutes")),
        minutes_until_race=_positive_number(raw.get("timeUntilRace")),
    )


def parse_oracle_payload(payload: Any) -> list[RaceDescriptor]:
    """Coerce the oracle output into descriptors, skipping unusable entries."""
    if isinstance(payload, dict):
        entries = payload.get("races") or payload.get("raceTimes") or []
    elif isinstance(payload, list):
        entries = payload
    else:
        entries = []
    if not isinstance(entries, list):
        logger.warning("Oracle race list has unexpected type %s.", type(entries).__name__)
        return []

    descriptors = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        descriptor = _descriptor_from_dict(entry)
        if descriptor is None:
            logger.info("Skipping oracle entry without race or name: %r", entry)
            continue
        descriptors.append(descriptor)
    return descriptors


# ── Time resolution ──────────────────────────────────────────────────────────

def resolve_scheduled_at(descriptor: RaceDescriptor, now: datetime) -> datetime | None:
    """Absolute start time for ``descriptor``, or None if it has no usable time."""
    if descriptor.countdown_seconds is not None:
        return now + timedelta(seconds=descriptor.countdown_seconds)
    if descriptor.countdown_minutes is not None:
        return now + timedelta(minutes=descriptor.countdown_minutes)
    if descriptor.minutes_until_race is not None:
        return now + timedelta(minutes=descriptor.minutes_until_race)

    if descriptor.clock_time:
        match = _CLOCK_RE.match(descriptor.clock_time)
        if not match:
            return None
        hour, minute = int(match.group(1)), int(match.group(2))
        second = int(match.group(3) or 0)
        if hour > 23 or minute > 59 or second > 59:
            return None
        at = now.replace(hour=hour, minute=minute, second=second, microsecond=0)
        if at <= now:
            at += timedelta(days=1)
        return at
    return None


def matches_track_allowlist(descriptor: RaceDescriptor, allowlist: Iterable[str]) -> bool:
    tracks = [t.casefold() for t in allowlist if t]
    if not tracks:
        return True
    haystack = f"{descriptor.identifier} {descriptor.display_name}".casefold()
    return any(track in haystack for track in tracks)


# ── Ingestion ────────────────────────────────────────────────────────────────

class ScheduleIngestion:
    """Feeds oracle output into a ``ScheduleStore``."""

    def __init__(self, store: ScheduleStore, clock: Clock, track_allowlist: Iterable[str] = ()):
        self.store = store
        self.clock = clock
        self.track_allowlist = list(track_allowlist)

    def ingest(self, raw: Any, now: datetime | None = None) -> list[EventRecord]:
        """
        Resolve, filter, insert (in order) and sweep.

        Returns the races that were added and survived the dedup sweep.
        """
        now = self.clock.localize(now or self.clock.now())
        descriptors = parse_oracle_payload(raw)

        inserted: list[EventRecord] = []
        for descriptor in descriptors:
            if not matches_track_allowlist(descriptor, self.track_allowlist):
                logger.info("Skipping %s: not on the track allowlist.", descriptor.identifier)
                continue

            scheduled_at = resolve_scheduled_at(descriptor, now)
            if scheduled_at is None:
                logger.info("Skipping %s: no usable start time.", descriptor.identifier)
                continue
            if scheduled_at <= now or scheduled_at - now > MAX_LOOKAHEAD:
                logger.info("Skipping %s: start %s is outside the next 24h.",
                            descriptor.identifier, scheduled_at.isoformat())
                continue

            record = EventRecord(
                identifier=descriptor.identifier,
                scheduled_at=scheduled_at,
                display_name=descriptor.display_name,
                added_at=now,
            )
            if self.store.insert(record, now):
                inserted.append(record)

        if inserted:
            self.store.dedupe_all()
            kept = {r.key for r in self.store.upcoming()}
            inserted = [r for r in inserted if r.key in kept]

        logger.info("Ingested %d of %d oracle race(s); %d tracked in total.",
                    len(inserted), len(descriptors), len(self.store))
        return inserted
