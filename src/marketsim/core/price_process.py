"""Random walk with mean reversion toward the anchor price."""

import math

from .models import TimeframePolicy
from .random_source import RandomSource

DEFAULT_PRICE_FLOOR = 0.01


class PriceProcess:
    """Produces the next price of a simulated instrument.

    The step is ``current * volatility * u`` with ``u`` drawn from
    ``uniform(-1, 1)``, plus a pull of ``(anchor - current) * mean_reversion``.
    Results are clamped at ``floor`` and rounded to cents.
    """

    def __init__(self, random_source: RandomSource, floor: float = DEFAULT_PRICE_FLOOR):
        self.random_source = random_source
        self.floor = floor

    def next(self, current_price: float, anchor_price: float, policy: TimeframePolicy) -> float:
        if not _is_finite(current_price) or current_price < self.floor:
            current_price = self.floor
        if not _is_finite(anchor_price):
            anchor_price = current_price

        shock = self.random_source.uniform(-1.0, 1.0)
        delta = current_price * policy.volatility * shock
        reversion = (anchor_price - current_price) * policy.mean_reversion

        new_price = current_price + delta + reversion
        if not _is_finite(new_price):
            return round(self.floor, 2)
        return round(max(self.floor, new_price), 2)


def _is_finite(value: float) -> bool:
    try:
        return math.isfinite(value)
    except TypeError:
        return False
