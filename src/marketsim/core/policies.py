"""Static sampling policy per timeframe."""

from typing import Dict

from .models import Timeframe, TimeframePolicy

MINUTES_PER_HOUR = 60
MINUTES_PER_DAY = 24 * MINUTES_PER_HOUR
MINUTES_PER_MONTH = 30 * MINUTES_PER_DAY

TIMEFRAME_POLICIES: Dict[Timeframe, TimeframePolicy] = {
    Timeframe.ONE_DAY: TimeframePolicy(
        retained_points=24,
        sample_interval_minutes=MINUTES_PER_HOUR,
        tick_interval_ms=2000,
        volatility=0.004,
        mean_reversion=0.05,
    ),
    Timeframe.ONE_WEEK: TimeframePolicy(
        retained_points=7,
        sample_interval_minutes=MINUTES_PER_DAY,
        tick_interval_ms=2000,
        volatility=0.01,
        mean_reversion=0.04,
    ),
    Timeframe.ONE_MONTH: TimeframePolicy(
        retained_points=30,
        sample_interval_minutes=MINUTES_PER_DAY,
        tick_interval_ms=3000,
        volatility=0.012,
        mean_reversion=0.03,
    ),
    Timeframe.THREE_MONTHS: TimeframePolicy(
        retained_points=90,
        sample_interval_minutes=MINUTES_PER_DAY,
        tick_interval_ms=4000,
        volatility=0.015,
        mean_reversion=0.02,
    ),
    Timeframe.ONE_YEAR: TimeframePolicy(
        retained_points=365,
        sample_interval_minutes=MINUTES_PER_DAY,
        tick_interval_ms=5000,
        volatility=0.02,
        mean_reversion=0.01,
    ),
    Timeframe.FIVE_YEARS: TimeframePolicy(
        retained_points=60,
        sample_interval_minutes=MINUTES_PER_MONTH,
        tick_interval_ms=5000,
        volatility=0.05,
        mean_reversion=0.01,
    ),
}


def policy_for(timeframe) -> TimeframePolicy:
    """Look up the policy for a timeframe or its name."""
    return TIMEFRAME_POLICIES[Timeframe.parse(timeframe)]
