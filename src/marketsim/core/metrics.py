"""Window summary figures shown next to the chart."""

from typing import Sequence

from .models import MarketSummary, Observation


def summarize(observations: Sequence[Observation]) -> MarketSummary:
    """Aggregate volume, range and average price over a window."""
    if not observations:
        return MarketSummary()

    prices = [o.price for o in observations]
    return MarketSummary(
        total_volume=sum(o.volume for o in observations),
        high=max(prices),
        low=min(prices),
        average_price=round(sum(prices) / len(prices), 4),
        change_percent=observations[-1].change_percent,
    )
