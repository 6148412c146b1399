"""Bounded random walk used for metric card sparklines."""

from typing import List

from .random_source import RandomSource

STEP_FRACTION = 0.05


def generate_sparkline(
    length: int, minimum: float, maximum: float, random_source: RandomSource
) -> List[float]:
    """
    Generate ``length`` values that wander inside ``[minimum, maximum]``.

    Args:
        length: Number of points
        minimum: Lower bound of the band
        maximum: Upper bound of the band
        random_source: Source of uniform draws

    Returns:
        List of values, each clamped to the band
    """
    if length <= 0:
        return []
    if maximum < minimum:
        minimum, maximum = maximum, minimum

    span = maximum - minimum
    value = minimum + random_source.random() * span
    values = []
    for _ in range(length):
        step = (random_source.random() - 0.5) * span * STEP_FRACTION
        value = max(minimum, min(maximum, value + step))
        values.append(value)
    return values
