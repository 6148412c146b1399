"""Synthetic market-data simulator with timeframe-driven streaming."""

from .core import Observation, Timeframe, TimeframePolicy, Trend, UpdateMode
from .exceptions import (
    InvalidTimeframeError,
    MarketSimException,
    ProviderError,
    SubscriptionNotFoundError,
)
from .services import (
    AlertSeverity,
    AlertState,
    MarketSimulator,
    SubscriptionConfig,
    SubscriptionHandle,
)

__version__ = "0.1.0"

__all__ = [
    "Observation",
    "Timeframe",
    "TimeframePolicy",
    "Trend",
    "UpdateMode",
    "InvalidTimeframeError",
    "MarketSimException",
    "ProviderError",
    "SubscriptionNotFoundError",
    "AlertSeverity",
    "AlertState",
    "MarketSimulator",
    "SubscriptionConfig",
    "SubscriptionHandle",
]
