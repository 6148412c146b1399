"""Shared test configuration and fixtures."""

import sys
from datetime import datetime, timezone
from itertools import cycle

import pytest

sys.path.append("src")

from marketsim.config.settings import Settings, get_settings
from marketsim.core.random_source import RandomSource
from marketsim.timers import ManualTimerBackend


class FixedRandomSource(RandomSource):
    """Random source replaying fixed fractions of each requested range.

    A fraction of 0.0 always returns the low bound and 1.0 the high bound.
    """

    def __init__(self, *fractions):
        self._fractions = cycle(fractions or (0.5,))

    def uniform(self, low, high):
        return low + next(self._fractions) * (high - low)

    def randint(self, low, high):
        return int(round(self.uniform(low, high)))


class Recorder:
    """Collects everything a subscription pushes to its callbacks."""

    def __init__(self):
        self.snapshots = []
        self.alerts = []
        self.errors = []

    def on_tick(self, snapshot):
        self.snapshots.append(snapshot)

    def on_alert(self, alert_state):
        self.alerts.append(alert_state)

    def on_error(self, error):
        self.errors.append(error)

    @property
    def last(self):
        return self.snapshots[-1]


@pytest.fixture
def manual_timers():
    """Fake clock timer backend."""
    return ManualTimerBackend()


@pytest.fixture
def test_settings():
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None, environment="testing", random_seed=None)


@pytest.fixture
def reference_instant():
    """Fixed newest timestamp for backfills (a Friday afternoon, UTC)."""
    return datetime(2024, 3, 15, 16, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_random():
    """Factory for deterministic random sources."""
    return FixedRandomSource


@pytest.fixture
def recorder():
    """Callback recorder for subscriptions."""
    return Recorder()


@pytest.fixture(autouse=True)
def clean_settings_cache():
    """Clear the settings cache between tests to avoid state pollution."""
    yield
    get_settings.cache_clear()
