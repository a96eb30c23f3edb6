"""Tests for message formatting and the sender factory."""
from datetime import timedelta

import telegram_alerts
from odds_monitor import PRE_START, UpcomingRace
from price_baselines import MovementRecord, PriceBaselineStore, PriceQuote
from race_schedule import EventRecord
from tests.helpers import at


def test_race_alert_mentions_race_and_time():
    record = EventRecord("R<4>", at(14, 5), display_name="Flemington & Co")
    text = telegram_alerts.format_race_alert(record, at(14, 0, 30))
    assert "R&lt;4&gt;" in text
    assert "5 minutes" in text
    assert "14:05" in text
    assert "Flemington &amp; Co" in text


def test_movement_alert_lists_each_runner():
    race = UpcomingRace("E1", at(14, 5), "Flemington", "Race 4")
    moves = [
        MovementRecord("E1", "Alpha", 3, 4.5, 3.2, 28.9),
        MovementRecord("E1", "Bravo", None, 4.0, 6.0, 50.0),
    ]
    text = telegram_alerts.format_movement_alert(race, PRE_START, moves, at(14, 4, 40))
    assert "pre-start" in text
    assert "Flemington - Race 4" in text
    assert "starts in 20s" in text
    assert "#3 <b>Alpha</b>" in text
    assert "4.50 → 3.20" in text
    assert "(+50.0%)" in text


def test_status_sorted_listing_and_empty_state():
    now = at(14, 0)
    assert "No active race notifications" in telegram_alerts.format_status([], now)
    records = [EventRecord("R1", at(14, 10)), EventRecord("R2", at(14, 30))]
    text = telegram_alerts.format_status(records, now)
    assert text.index("R1") < text.index("R2")
    assert "Alert in 5 min" in text
    assert "Alert in 25 min" in text


def test_tracking_listing():
    now = at(14, 0)
    assert "off" in telegram_alerts.format_tracking([], now, monitor_enabled=False)
    store = PriceBaselineStore(capture_window=(115, 125))
    store.maybe_capture_baseline(
        "E1", now, now + timedelta(seconds=120),
        lambda: {"A": PriceQuote("A", 3.0)}, label="Flemington - Race 4",
    )
    text = telegram_alerts.format_tracking(store.tracking_status(), now, monitor_enabled=True)
    assert "Flemington - Race 4" in text
    assert "starts in 2 min" in text
    assert "baseline 1 runners @ 14:00:00" in text


def test_analysis_reply_variants():
    now = at(14, 0)
    added = [EventRecord("R1", at(14, 30))]
    assert "Notifications set up" in telegram_alerts.format_analysis_reply("x", added, 1, now)
    assert "already tracked" in telegram_alerts.format_analysis_reply("x", [], 2, now)
    assert "No upcoming races" in telegram_alerts.format_analysis_reply("x", [], 0, now)


def test_dry_run_sender_does_not_touch_telegram(monkeypatch):
    def boom(*args, **kwargs):
        raise AssertionError("should not send")

    monkeypatch.setattr(telegram_alerts, "send_message", boom)
    send = telegram_alerts.make_sender("123", dry_run=True)
    assert send("hello") is True


def test_send_without_token_prints_to_console(monkeypatch, capsys):
    monkeypatch.setattr(telegram_alerts.config, "TELEGRAM_BOT_TOKEN", "")
    assert telegram_alerts.send_message("123", "hello there") is True
    assert "hello there" in capsys.readouterr().out
