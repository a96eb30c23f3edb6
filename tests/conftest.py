"""Shared test fixtures: pinned clock, fresh stores, recording sender."""
from __future__ import annotations

import pytest

from clock import FixedClock
from price_baselines import PriceBaselineStore
from race_schedule import ScheduleStore
from tests.helpers import RecordingSender, at


@pytest.fixture
def clock():
    return FixedClock(at(14, 0), tz_name="Australia/Melbourne")


@pytest.fixture
def schedule():
    return ScheduleStore()


@pytest.fixture
def prices():
    return PriceBaselineStore(capture_window=(115, 125), history_size=5)


@pytest.fixture
def sender():
    return RecordingSender()
