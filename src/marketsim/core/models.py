"""Data models for the simulated market series."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from ..exceptions import InvalidTimeframeError


class Timeframe(Enum):
    """Named viewing windows offered to the chart."""

    ONE_DAY = "1D"
    ONE_WEEK = "1W"
    ONE_MONTH = "1M"
    THREE_MONTHS = "3M"
    ONE_YEAR = "1Y"
    FIVE_YEARS = "5Y"

    @classmethod
    def parse(cls, value) -> "Timeframe":
        """Resolve a timeframe from an enum member or its name ("1D", "1w", ...)."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise InvalidTimeframeError(value) from None


class Trend(Enum):
    """Direction of the last price step."""

    UP = "up"
    DOWN = "down"


class UpdateMode(Enum):
    """How a stream mutates its window on each tick."""

    REGENERATE = "regenerate"
    APPEND = "append"
    SMOOTHED = "smoothed"


@dataclass(frozen=True)
class TimeframePolicy:
    """Sampling and randomness parameters for one timeframe."""

    retained_points: int
    sample_interval_minutes: int
    tick_interval_ms: int
    volatility: float
    mean_reversion: float

    def __post_init__(self):
        if self.retained_points <= 0:
            raise ValueError("retained_points must be positive")
        if self.sample_interval_minutes <= 0:
            raise ValueError("sample_interval_minutes must be positive")
        if self.tick_interval_ms <= 0:
            raise ValueError("tick_interval_ms must be positive")
        if self.volatility <= 0:
            raise ValueError("volatility must be positive")
        if not 0 <= self.mean_reversion < 1:
            raise ValueError("mean_reversion must be in [0, 1)")


@dataclass(frozen=True)
class Observation:
    """One timestamped point of the series."""

    timestamp: datetime
    price: float
    display_label: str
    volume: int
    moving_average_20: Optional[float] = None
    change: Optional[float] = None
    change_percent: Optional[float] = None

    def to_dict(self) -> dict:
        """Convert the observation to plain data for rendering."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "price": self.price,
            "display_label": self.display_label,
            "volume": self.volume,
            "moving_average_20": self.moving_average_20,
            "change": self.change,
            "change_percent": self.change_percent,
        }


@dataclass(frozen=True)
class SeriesState:
    """Committed state of one subscription's window."""

    timeframe: Timeframe
    observations: Tuple[Observation, ...]
    anchor_price: float
    current_price: float
    trend: Trend = Trend.UP
    sparkline: Tuple[float, ...] = ()

    @property
    def last(self) -> Optional[Observation]:
        return self.observations[-1] if self.observations else None


@dataclass(frozen=True)
class MarketSummary:
    """Aggregate figures over the current window."""

    total_volume: int = 0
    high: Optional[float] = None
    low: Optional[float] = None
    average_price: Optional[float] = None
    change_percent: Optional[float] = None


@dataclass(frozen=True)
class SeriesSnapshot:
    """Read-only view of a stream handed to the rendering layer."""

    symbol: str
    timeframe: Timeframe
    observations: Tuple[Observation, ...]
    current_price: float
    trend: Trend
    anchor_price: float
    change: Optional[float]
    change_percent: Optional[float]
    summary: MarketSummary = field(default_factory=MarketSummary)
    sparkline: Tuple[float, ...] = ()
    show_tutorial: bool = False
