"""Generation core: models, price process and series construction."""

from .metrics import summarize
from .models import (
    MarketSummary,
    Observation,
    SeriesSnapshot,
    SeriesState,
    Timeframe,
    TimeframePolicy,
    Trend,
    UpdateMode,
)
from .policies import TIMEFRAME_POLICIES, policy_for
from .price_process import PriceProcess
from .random_source import RandomSource, SeededRandomSource
from .series_builder import (
    SeriesBuilder,
    apply_derived_fields,
    format_display_label,
    moving_average,
)
from .sparkline import generate_sparkline

__all__ = [
    "MarketSummary",
    "Observation",
    "SeriesSnapshot",
    "SeriesState",
    "Timeframe",
    "TimeframePolicy",
    "Trend",
    "UpdateMode",
    "TIMEFRAME_POLICIES",
    "policy_for",
    "PriceProcess",
    "RandomSource",
    "SeededRandomSource",
    "SeriesBuilder",
    "apply_derived_fields",
    "format_display_label",
    "moving_average",
    "generate_sparkline",
    "summarize",
]
