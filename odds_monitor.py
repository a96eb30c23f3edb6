"""
odds_monitor.py — Periodic price-movement watcher for upcoming races.

Each tick:
  1. Fetch upcoming races from the odds provider, keep allowlisted tracks.
  2. Capture a baseline for races inside the capture window.
  3. At each checkpoint (shortly before and shortly after the start) compare
     fresh prices against the baseline and alert on big moves, once per
     ``(checkpoint, race, moved runners)``.
  4. Evict old price history and bound the dedup set.

A failed fetch for one race is logged and the loop moves on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable

import config
from clock import Clock
from price_baselines import (
    AlertDedupSet,
    MovementRecord,
    PriceBaselineStore,
    quotes_from_rows,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Checkpoint:
    """A comparison window in seconds-to-start (negative = after the start)."""

    name:  str
    lower: float
    upper: float

    def contains(self, seconds_to_start: float) -> bool:
        return self.lower < seconds_to_start <= self.upper


PRE_START  = Checkpoint("pre", 0, 30)
POST_START = Checkpoint("post", -20, -10)


@dataclass(frozen=True)
class UpcomingRace:
    event_id:    str
    starts_at:   datetime
    league_name: str = ""
    home_name:   str = ""

    @property
    def label(self) -> str:
        return " - ".join(p for p in (self.league_name, self.home_name) if p) or self.event_id

    def seconds_to_start(self, now: datetime) -> float:
        return (self.starts_at - now).total_seconds()


def upcoming_from_row(row: dict, clock: Clock) -> UpcomingRace | None:
    try:
        event_id = str(row["id"])
        starts_at = datetime.fromtimestamp(int(row["unixStartTime"]), tz=clock.tz)
    except (KeyError, TypeError, ValueError, OverflowError, OSError):
        logger.debug("Skipping malformed upcoming-event row: %r", row)
        return None
    return UpcomingRace(
        event_id=event_id,
        starts_at=starts_at,
        league_name=str(row.get("leagueName") or ""),
        home_name=str(row.get("homeName") or ""),
    )


def matches_tracks(race: UpcomingRace, allowlist: Iterable[str]) -> bool:
    tracks = [t.casefold() for t in allowlist if t]
    if not tracks:
        return True
    haystack = f"{race.league_name} {race.home_name}".casefold()
    return any(track in haystack for track in tracks)


class OddsMonitor:
    def __init__(
        self,
        store: PriceBaselineStore,
        clock: Clock,
        fetch_events: Callable[[], list[dict]],
        fetch_event_odds: Callable[[str], list[dict]],
        send: Callable[[str], bool],
        format_alert: Callable[[UpcomingRace, Checkpoint, list[MovementRecord], datetime], str],
        track_allowlist: Iterable[str] = (),
        threshold_percent: float = config.MOVEMENT_THRESHOLD_PERCENT,
        monitor_window_seconds: float = config.ODDS_MONITOR_WINDOW_SECONDS,
        checkpoints: tuple[Checkpoint, ...] = (PRE_START, POST_START),
        retention_minutes: float = config.PRICE_RETENTION_MINUTES,
        dedup: AlertDedupSet | None = None,
        direction: str = config.MOVEMENT_DIRECTION,
        enabled: bool = True,
    ):
        self.store = store
        self.clock = clock
        self.fetch_events = fetch_events
        self.fetch_event_odds = fetch_event_odds
        self.send = send
        self.format_alert = format_alert
        self.track_allowlist = list(track_allowlist)
        self.threshold_percent = threshold_percent
        self.monitor_window_seconds = monitor_window_seconds
        self.checkpoints = checkpoints
        self.retention_minutes = retention_minutes
        self.dedup = dedup if dedup is not None else AlertDedupSet()
        self.direction = direction
        self.enabled = enabled

    def _earliest_checkpoint(self) -> float:
        return min([0.0] + [c.lower for c in self.checkpoints])

    def _fetch_snapshot(self, race: UpcomingRace):
        return quotes_from_rows(self.fetch_event_odds(race.event_id))

    def tick(self, now: datetime | None = None) -> int:
        """Run one poll.  Returns the number of movement alerts delivered."""
        if not self.enabled:
            return 0
        now = now or self.clock.now()

        try:
            rows = self.fetch_events() or []
        except Exception:
            logger.exception("Fetching upcoming races failed — skipping this poll.")
            return 0

        races = [r for r in (upcoming_from_row(row, self.clock) for row in rows) if r is not None]
        races = [r for r in races if matches_tracks(r, self.track_allowlist)]
        earliest = self._earliest_checkpoint()

        sent = 0
        for race in races:
            to_start = race.seconds_to_start(now)
            if not earliest < to_start <= self.monitor_window_seconds:
                continue
            try:
                sent += self._process_race(race, to_start, now)
            except Exception:
                logger.exception("Price check for %s failed — continuing.", race.label)

        self.store.evict(now, self.retention_minutes)
        self.dedup.enforce_ceiling()
        return sent

    def _process_race(self, race: UpcomingRace, to_start: float, now: datetime) -> int:
        self.store.observe(race.event_id, now, race.starts_at, label=race.label)
        self.store.maybe_capture_baseline(
            race.event_id, now, race.starts_at,
            lambda: self._fetch_snapshot(race),
            label=race.label,
        )

        active = [c for c in self.checkpoints if c.contains(to_start)]
        if not active or not self.store.has_baseline(race.event_id):
            return 0

        current = self._fetch_snapshot(race)
        if not current:
            logger.info("No current prices for %s.", race.label)
            return 0
        self.store.record_snapshot(race.event_id, current, now)

        movements = self.store.compare_against_baseline(
            race.event_id, current, self.threshold_percent, self.direction,
        )
        if not movements:
            return 0

        sent = 0
        for checkpoint in active:
            key = self.dedup.key(checkpoint.name, race.event_id,
                                 (m.runner_label for m in movements))
            if self.dedup.seen(key):
                continue
            try:
                ok = self.send(self.format_alert(race, checkpoint, movements, now))
            except Exception:
                logger.exception("Movement alert for %s failed.", race.label)
                continue
            if ok:
                self.dedup.add(key)
                sent += 1
                logger.info("Sent %s-start movement alert for %s (%d runner(s)).",
                            checkpoint.name, race.label, len(movements))
        return sent
