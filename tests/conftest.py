"""Shared fixtures."""

import pytest

from listing_watch.metrics import MetricsAggregator


@pytest.fixture
def metrics(tmp_path):
    return MetricsAggregator(window_size=100, snapshot_path=tmp_path / "metrics.json")


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
