"""Backfill of a complete observation window for a timeframe."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence

from .models import Observation, Timeframe, TimeframePolicy
from .price_process import PriceProcess
from .random_source import RandomSource

DEFAULT_VOLUME_CAP = 1_000_000
MOVING_AVERAGE_WINDOW = 20

# Label granularity communicates the sampling resolution of each timeframe.
DISPLAY_FORMATS = {
    Timeframe.ONE_DAY: "%H:%M",
    Timeframe.ONE_WEEK: "%a %b %d",
    Timeframe.ONE_MONTH: "%b %d",
    Timeframe.THREE_MONTHS: "%b %Y",
    Timeframe.ONE_YEAR: "%b %Y",
    Timeframe.FIVE_YEARS: "%Y",
}


def format_display_label(timestamp: datetime, timeframe: Timeframe) -> str:
    """Format a timestamp at the granularity tier of the timeframe."""
    return timestamp.strftime(DISPLAY_FORMATS[Timeframe.parse(timeframe)])


def moving_average(
    prices: Sequence[float], window: int = MOVING_AVERAGE_WINDOW
) -> List[Optional[float]]:
    """
    Trailing arithmetic mean of ``prices``.

    Args:
        prices: Prices in chronological order
        window: Number of trailing points averaged

    Returns:
        One entry per price; ``None`` until ``window`` points are available
    """
    averages: List[Optional[float]] = []
    for i in range(len(prices)):
        if i + 1 < window:
            averages.append(None)
        else:
            trailing = prices[i + 1 - window : i + 1]
            averages.append(round(sum(trailing) / window, 4))
    return averages


def change_from_anchor(price: float, anchor_price: float):
    """Return ``(change, change_percent)``; the percent is ``None`` for a zero anchor."""
    change = round(price - anchor_price, 4)
    if anchor_price == 0:
        return change, None
    return change, round(change / anchor_price * 100, 4)


def apply_derived_fields(
    observations: Iterable[Observation],
    anchor_price: float,
    window: int = MOVING_AVERAGE_WINDOW,
) -> List[Observation]:
    """Recompute change, change percent and moving average over a window.

    Pure function of its inputs: derived values already present on the
    observations are ignored and replaced.
    """
    observations = list(observations)
    averages = moving_average([o.price for o in observations], window)

    derived = []
    for observation, average in zip(observations, averages):
        change, change_percent = change_from_anchor(observation.price, anchor_price)
        derived.append(
            replace(
                observation,
                moving_average_20=average,
                change=change,
                change_percent=change_percent,
            )
        )
    return derived


class SeriesBuilder:
    """Builds a full window of observations ending at a reference instant."""

    def __init__(
        self,
        price_process: PriceProcess,
        random_source: RandomSource,
        volume_cap: int = DEFAULT_VOLUME_CAP,
        moving_average_window: int = MOVING_AVERAGE_WINDOW,
    ):
        self.price_process = price_process
        self.random_source = random_source
        self.volume_cap = volume_cap
        self.moving_average_window = moving_average_window

    def random_volume(self) -> int:
        return self.random_source.randint(0, self.volume_cap)

    def observation_at(
        self, timestamp: datetime, price: float, timeframe: Timeframe, volume: int = None
    ) -> Observation:
        """Create an observation without derived fields."""
        return Observation(
            timestamp=timestamp,
            price=price,
            display_label=format_display_label(timestamp, timeframe),
            volume=self.random_volume() if volume is None else volume,
        )

    def build(
        self,
        timeframe: Timeframe,
        anchor_price: float,
        policy: TimeframePolicy,
        reference_instant: Optional[datetime] = None,
    ) -> List[Observation]:
        """
        Generate ``policy.retained_points`` observations ending at ``reference_instant``.

        Args:
            timeframe: Timeframe whose label tier is used
            anchor_price: Starting price and reference for change figures
            policy: Sampling and randomness parameters
            reference_instant: Timestamp of the newest point (defaults to now, UTC)

        Returns:
            Observations in strictly increasing timestamp order
        """
        timeframe = Timeframe.parse(timeframe)
        if reference_instant is None:
            reference_instant = datetime.now(timezone.utc)

        interval = timedelta(minutes=policy.sample_interval_minutes)
        count = policy.retained_points

        observations = []
        running_price = anchor_price
        for i in range(count):
            timestamp = reference_instant - (count - 1 - i) * interval
            running_price = self.price_process.next(running_price, anchor_price, policy)
            observations.append(self.observation_at(timestamp, running_price, timeframe))

        return apply_derived_fields(observations, anchor_price, self.moving_average_window)
