"""
alert_scheduler.py — Periodic "race starts soon" alerts.

Each tick sends one alert for every race inside the lead window that has not
been alerted yet, then forgets races that started more than the grace window
ago.  A failing send only affects its own race.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

import config
from clock import Clock
from race_schedule import EventRecord, ScheduleStore

logger = logging.getLogger(__name__)


class AlertScheduler:
    def __init__(
        self,
        store: ScheduleStore,
        clock: Clock,
        send: Callable[[str], bool],
        format_alert: Callable[[EventRecord, datetime], str],
        lead_minutes: float = config.ALERT_LEAD_MINUTES,
        grace_minutes: float = config.ALERT_GRACE_MINUTES,
        mark_before_send: bool = config.ALERT_MARK_BEFORE_SEND,
    ):
        self.store = store
        self.clock = clock
        self.send = send
        self.format_alert = format_alert
        self.lead_minutes = lead_minutes
        self.grace_minutes = grace_minutes
        self.mark_before_send = mark_before_send

    def tick(self, now: datetime | None = None) -> int:
        """Run one check.  Returns the number of alerts delivered."""
        now = now or self.clock.now()
        sent = 0

        for record in self.store.due_for_alert(now, self.lead_minutes):
            if self.mark_before_send:
                self.store.mark_alerted(record)
            try:
                ok = self.send(self.format_alert(record, now))
            except Exception:
                logger.exception("Alert for %s failed.", record.identifier)
                continue
            if not ok:
                logger.warning("Alert for %s was not delivered%s.", record.identifier,
                               "" if self.mark_before_send else "; will retry next check")
                continue
            if not self.mark_before_send:
                self.store.mark_alerted(record)
            sent += 1
            logger.info("Sent alert for %s (%.1f min to start).",
                        record.identifier, record.minutes_until(now))

        self.store.expire_stale(now, self.grace_minutes)
        return sent
