"""Tests for price parsing, baseline capture and movement comparison."""
from datetime import timedelta

import pytest

from price_baselines import (
    DIRECTION_SHORTEN,
    AlertDedupSet,
    PriceQuote,
    parse_price,
    quotes_from_rows,
)
from tests.helpers import at


def snap(**prices):
    return {name: PriceQuote(runner_label=name, price=p) for name, p in prices.items()}


@pytest.mark.parametrize("raw, expected", [
    ("5/2", 3.5),
    ("9/4", 3.25),
    ("2.50", 2.5),
    (" 11/10 ", 2.1),
    ("EVS", 2.0),
    (4.2, 4.2),
])
def test_parse_price_accepts_decimal_and_fractional(raw, expected):
    assert parse_price(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw", ["abc", "", None, "1.00", "0.5", "-3", "5/0", "nan", "inf", True])
def test_parse_price_rejects_unusable(raw):
    assert parse_price(raw) is None


def test_quotes_from_rows_drops_bad_runners():
    quotes = quotes_from_rows([
        {"runnerName": "Alpha", "runnerNumber": "3", "priceString": "5/2"},
        {"runnerName": "Bravo", "runnerNumber": None, "priceString": "abc"},
        {"runnerName": "", "priceString": "4.0"},
        {"runnerName": "Charlie", "runnerNumber": "x", "priceString": "6.00"},
    ])
    assert set(quotes) == {"Alpha", "Charlie"}
    assert quotes["Alpha"].runner_number == 3
    assert quotes["Alpha"].price == 3.5
    assert quotes["Charlie"].runner_number is None


def test_threshold_comparison(prices):
    race_time = at(14, 2)
    prices.maybe_capture_baseline("E1", at(14, 0), race_time, lambda: snap(A=4.50, B=6.00))

    moves = prices.compare_against_baseline("E1", snap(A=3.20, B=4.20), 20)
    assert {m.runner_label for m in moves} == {"A", "B"}
    by_runner = {m.runner_label: m for m in moves}
    assert by_runner["A"].change_percent == pytest.approx(28.89, abs=0.01)
    assert by_runner["B"].change_percent == pytest.approx(30.0)
    assert moves[0].runner_label == "B"  # largest move first
    assert all(m.direction == "in" for m in moves)

    assert prices.compare_against_baseline("E1", snap(A=4.00), 20) == []


def test_runners_missing_on_either_side_are_skipped(prices):
    prices.maybe_capture_baseline("E1", at(14, 0), at(14, 2), lambda: snap(A=4.0, B=5.0))
    moves = prices.compare_against_baseline("E1", snap(B=2.0, C=1.5), 20)
    assert [m.runner_label for m in moves] == ["B"]


def test_symmetric_direction_flags_drifters(prices):
    prices.maybe_capture_baseline("E1", at(14, 0), at(14, 2), lambda: snap(A=4.0, B=5.0))
    moves = prices.compare_against_baseline("E1", snap(A=6.0, B=3.0), 20)
    assert {m.runner_label: m.direction for m in moves} == {"A": "out", "B": "in"}


def test_shorten_only_direction_ignores_drifters(prices):
    prices.maybe_capture_baseline("E1", at(14, 0), at(14, 2), lambda: snap(A=4.0, B=5.0))
    moves = prices.compare_against_baseline("E1", snap(A=6.0, B=3.0), 20, DIRECTION_SHORTEN)
    assert [m.runner_label for m in moves] == ["B"]


def test_no_baseline_means_no_movement(prices):
    assert prices.compare_against_baseline("nope", snap(A=2.0), 1) == []


def test_baseline_captured_once_inside_window(prices):
    calls = []

    def fetch():
        calls.append(1)
        return snap(A=4.0)

    race_time = at(14, 2)
    assert prices.maybe_capture_baseline("E1", race_time - timedelta(seconds=124), race_time, fetch)
    assert not prices.maybe_capture_baseline("E1", race_time - timedelta(seconds=118), race_time,
                                             lambda: snap(A=9.0))
    assert len(calls) == 1
    assert prices.baseline_for("E1")["A"].price == 4.0
    assert len(prices) == 1


@pytest.mark.parametrize("seconds_out, captured", [
    (126, False), (125, True), (120, True), (115, True), (114, False), (30, False),
])
def test_capture_window_bounds(prices, seconds_out, captured):
    race_time = at(14, 5)
    now = race_time - timedelta(seconds=seconds_out)
    assert prices.maybe_capture_baseline("E1", now, race_time, lambda: snap(A=3.0)) is captured


def test_empty_or_failing_fetch_does_not_capture(prices):
    race_time = at(14, 2)

    def broken():
        raise ConnectionError("provider down")

    assert not prices.maybe_capture_baseline("E1", at(14, 0), race_time, lambda: {})
    assert not prices.maybe_capture_baseline("E1", at(14, 0), race_time, broken)
    assert not prices.has_baseline("E1")
    assert prices.maybe_capture_baseline("E1", at(14, 0), race_time, lambda: snap(A=3.0))


def test_history_is_bounded(prices):
    prices.maybe_capture_baseline("E1", at(14, 0), at(14, 2), lambda: snap(A=4.0))
    for i in range(10):
        prices.record_snapshot("E1", snap(A=4.0 + i), at(14, 0, i))
    series = prices.tracking_status()[0]
    assert len(series.history) == 5
    assert series.history[-1][1]["A"].price == 13.0
    assert series.baseline["A"].price == 4.0


def test_evict_after_retention(prices):
    prices.maybe_capture_baseline("OLD", at(14, 0), at(14, 2), lambda: snap(A=4.0))
    prices.maybe_capture_baseline("NEW", at(14, 20), at(14, 22), lambda: snap(A=4.0))
    assert prices.evict(at(14, 31), retention_minutes=30) == 1
    assert not prices.has_baseline("OLD")
    assert prices.has_baseline("NEW")


def test_alert_dedup_set_key_is_order_independent():
    dedup = AlertDedupSet(ceiling=3)
    key = dedup.key("pre", "E1", ["B", "A"])
    assert key == dedup.key("pre", "E1", ["A", "B"])
    assert key != dedup.key("post", "E1", ["A", "B"])
    dedup.add(key)
    assert dedup.seen(key)


def test_alert_dedup_set_clears_past_ceiling():
    dedup = AlertDedupSet(ceiling=3)
    for i in range(3):
        dedup.add(f"k{i}")
    dedup.enforce_ceiling()
    assert len(dedup) == 3
    dedup.add("k3")
    dedup.enforce_ceiling()
    assert len(dedup) == 0


def test_observe_creates_series_without_baseline(prices):
    prices.observe("E1", at(14, 0), at(14, 3), label="Flemington - Race 1")
    assert len(prices) == 1
    assert not prices.has_baseline("E1")
    series = prices.tracking_status()[0]
    assert series.label == "Flemington - Race 1"
    assert series.starts_at == at(14, 3)

    prices.observe("E1", at(14, 0, 30), at(14, 3, 30))
    series = prices.tracking_status()[0]
    assert series.label == "Flemington - Race 1"
    assert series.starts_at == at(14, 3, 30)
    assert series.last_update == at(14, 0, 30)
    assert prices.maybe_capture_baseline("E1", at(14, 1, 30), at(14, 3, 30), lambda: snap(A=3.0))
