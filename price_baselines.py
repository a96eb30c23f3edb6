"""
price_baselines.py — Baseline price capture and movement detection.

For every monitored race a single baseline snapshot is taken while the race
is inside the capture window (seconds before the start).  Later snapshots are
compared to it runner by runner; a runner whose price moved by at least the
threshold percentage produces a ``MovementRecord``.

Prices may arrive as decimal odds ("2.50") or fractional odds ("5/2" → 3.5).
Anything that does not parse to a finite price above 1.0 drops that runner
from the snapshot.
"""

from __future__ import annotations

import logging
import math
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

import config

logger = logging.getLogger(__name__)

DIRECTION_BOTH    = "both"
DIRECTION_SHORTEN = "shorten"


# ── Price parsing ────────────────────────────────────────────────────────────

def parse_price(value: Any) -> float | None:
    """Decimal odds for ``value``, or None if it is not a usable price."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        price = float(value)
    else:
        text = str(value).strip().upper()
        if text in ("EVS", "EVEN", "EVENS"):
            return 2.0
        try:
            if "/" in text:
                num, den = text.split("/", 1)
                price = float(num) / float(den) + 1
            else:
                price = float(text)
        except (ValueError, ZeroDivisionError):
            return None
    if not math.isfinite(price) or price <= 1.0:
        return None
    return price


@dataclass(frozen=True)
class PriceQuote:
    runner_label:  str
    price:         float
    runner_number: int | None = None


Snapshot = dict[str, PriceQuote]


def quotes_from_rows(rows: Iterable[dict]) -> Snapshot:
    """Build a snapshot from odds-provider rows, skipping unparseable prices."""
    snapshot: Snapshot = {}
    for row in rows:
        label = str(row.get("runnerName") or "").strip()
        price = parse_price(row.get("priceString"))
        if not label or price is None:
            logger.debug("Dropping runner %r with price %r.", label, row.get("priceString"))
            continue
        number = row.get("runnerNumber")
        try:
            number = int(number) if number is not None else None
        except (TypeError, ValueError):
            number = None
        snapshot[label] = PriceQuote(runner_label=label, price=price, runner_number=number)
    return snapshot


@dataclass(frozen=True)
class MovementRecord:
    event_id:       str
    runner_label:   str
    runner_number:  int | None
    baseline_price: float
    current_price:  float
    change_percent: float

    @property
    def direction(self) -> str:
        """'in' when the runner firmed (price shortened), 'out' when it drifted."""
        return "in" if self.current_price < self.baseline_price else "out"


@dataclass
class PriceSeries:
    event_id:    str
    label:       str = ""
    starts_at:   datetime | None = None
    baseline:    Snapshot | None = None
    baseline_at: datetime | None = None
    history:     deque = field(default_factory=lambda: deque(maxlen=config.PRICE_HISTORY_SIZE))
    last_update: datetime | None = None


# ── Store ────────────────────────────────────────────────────────────────────

class PriceBaselineStore:
    """Owns the baseline and rolling history of every monitored race."""

    def __init__(
        self,
        capture_window: tuple[float, float] = (
            config.BASELINE_WINDOW_START_SECONDS,
            config.BASELINE_WINDOW_END_SECONDS,
        ),
        history_size: int = config.PRICE_HISTORY_SIZE,
    ):
        self.capture_window = capture_window
        self.history_size = history_size
        self._series: dict[str, PriceSeries] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._series)

    def _series_for(self, event_id: str, now: datetime) -> PriceSeries:
        series = self._series.get(event_id)
        if series is None:
            series = PriceSeries(event_id=event_id, history=deque(maxlen=self.history_size))
            self._series[event_id] = series
        series.last_update = now
        return series

    def in_capture_window(self, now: datetime, race_time: datetime) -> bool:
        start, end = self.capture_window
        return start <= (race_time - now).total_seconds() <= end

    def has_baseline(self, event_id: str) -> bool:
        with self._lock:
            series = self._series.get(event_id)
            return series is not None and series.baseline is not None

    def baseline_for(self, event_id: str) -> Snapshot | None:
        with self._lock:
            series = self._series.get(event_id)
            return dict(series.baseline) if series and series.baseline else None

    def observe(self, event_id: str, now: datetime, race_time: datetime, label: str = "") -> None:
        """Start (or refresh) the series for a race seen inside the monitoring window."""
        with self._lock:
            created = event_id not in self._series
            series = self._series_for(event_id, now)
            series.label = label or series.label
            series.starts_at = race_time
        if created:
            logger.info("Monitoring %s (%.0fs to start).",
                        label or event_id, (race_time - now).total_seconds())

    def maybe_capture_baseline(
        self,
        event_id: str,
        now: datetime,
        race_time: datetime,
        fetch_quotes: Callable[[], Snapshot],
        label: str = "",
    ) -> bool:
        """
        Capture the baseline for ``event_id`` if the race is in the capture
        window and no baseline exists yet.  Returns True if one was stored.
        """
        if not self.in_capture_window(now, race_time) or self.has_baseline(event_id):
            return False

        try:
            quotes = fetch_quotes()
        except Exception:
            logger.exception("Baseline fetch for %s failed.", event_id)
            return False
        if not quotes:
            logger.info("No prices for %s yet — baseline not captured.", event_id)
            return False

        with self._lock:
            series = self._series_for(event_id, now)
            if series.baseline is not None:
                return False
            series.baseline = dict(quotes)
            series.baseline_at = now
            series.label = label or series.label
            series.starts_at = race_time
            series.history.append((now, dict(quotes)))
        logger.info("Captured baseline for %s (%d runners, %.0fs to start).",
                    label or event_id, len(quotes), (race_time - now).total_seconds())
        return True

    def record_snapshot(self, event_id: str, quotes: Snapshot, now: datetime) -> None:
        with self._lock:
            self._series_for(event_id, now).history.append((now, dict(quotes)))

    def compare_against_baseline(
        self,
        event_id: str,
        current_quotes: Snapshot,
        threshold_percent: float,
        direction: str = DIRECTION_BOTH,
    ) -> list[MovementRecord]:
        """Runners whose price moved at least ``threshold_percent`` from baseline."""
        baseline = self.baseline_for(event_id)
        if not baseline:
            return []

        movements = []
        for runner, before in baseline.items():
            after = current_quotes.get(runner)
            if after is None:
                continue
            change = abs(before.price - after.price) / before.price * 100
            if change < threshold_percent:
                continue
            if direction == DIRECTION_SHORTEN and after.price >= before.price:
                continue
            movements.append(MovementRecord(
                event_id=event_id,
                runner_label=runner,
                runner_number=after.runner_number if after.runner_number is not None
                else before.runner_number,
                baseline_price=before.price,
                current_price=after.price,
                change_percent=change,
            ))
        movements.sort(key=lambda m: m.change_percent, reverse=True)
        return movements

    def evict(self, now: datetime, retention_minutes: float) -> int:
        retention = timedelta(minutes=retention_minutes)
        with self._lock:
            stale = [
                event_id for event_id, series in self._series.items()
                if series.last_update is not None and now - series.last_update > retention
            ]
            for event_id in stale:
                del self._series[event_id]
        if stale:
            logger.info("Evicted price history for %d race(s).", len(stale))
        return len(stale)

    def tracking_status(self) -> list[PriceSeries]:
        """Every monitored race, soonest start first."""
        with self._lock:
            series = list(self._series.values())
        return sorted(series, key=lambda s: (s.starts_at is None, s.starts_at or datetime.min))


# ── Alert dedup ──────────────────────────────────────────────────────────────

class AlertDedupSet:
    """Keys of movement alerts already sent; cleared wholesale when it grows too big."""

    def __init__(self, ceiling: int = config.ALERT_DEDUP_CEILING):
        self.ceiling = ceiling
        self._keys: set[str] = set()

    def __len__(self) -> int:
        return len(self._keys)

    @staticmethod
    def key(namespace: str, event_id: str, runners: Iterable[str]) -> str:
        return f"{namespace}:{event_id}:{'|'.join(sorted(runners))}"

    def seen(self, key: str) -> bool:
        return key in self._keys

    def add(self, key: str) -> None:
        self._keys.add(key)

    def enforce_ceiling(self) -> None:
        if len(self._keys) > self.ceiling:
            logger.info("Alert dedup set reached %d keys — clearing.", len(self._keys))
            self._keys.clear()
