"""Adapters for optional external data providers."""

import math
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from numbers import Real
from typing import Any, Callable, Iterable, List, Mapping, Optional

from ..config.logging import get_logger
from ..core.models import Observation, Timeframe, TimeframePolicy
from ..core.series_builder import apply_derived_fields, format_display_label
from ..exceptions import ProviderError
from ..scheduler import PROVIDER_EXECUTOR
from ..timers import TimerBackend, TimerHandle

logger = get_logger(__name__)

HistoricalDataProvider = Callable[[Timeframe], Iterable[Any]]
RealtimeDataProvider = Callable[[str], Any]

PRICE_KEYS = ("price", "last", "close")
VOLUME_KEYS = ("volume", "size")


@dataclass(frozen=True)
class PriceQuote:
    """Single realtime update from a provider."""

    price: float
    volume: Optional[int] = None
    timestamp: Optional[datetime] = None


def _first(data: Mapping, keys) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _to_price(value: Any, floor: float) -> float:
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Invalid price: {value!r}")
    price = float(value)
    if not math.isfinite(price):
        raise ValueError(f"Invalid price: {value!r}")
    return round(max(floor, price), 2)


def _to_volume(value: Any) -> Optional[int]:
    if value is None:
        return None
    return max(0, int(value))


def _to_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        timestamp = value
    elif isinstance(value, str):
        timestamp = datetime.fromisoformat(value)
    elif isinstance(value, Real):
        seconds = float(value)
        if seconds > 1e11:  # Epoch milliseconds
            seconds /= 1000
        timestamp = datetime.fromtimestamp(seconds, tz=timezone.utc)
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")

    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp


def adapt_quote(raw: Any, floor: float = 0.01) -> PriceQuote:
    """
    Normalize a realtime provider result into a PriceQuote.

    Args:
        raw: PriceQuote, Observation, mapping with a price field, or a bare number
        floor: Lowest price accepted

    Returns:
        PriceQuote with a clamped price

    Raises:
        ValueError: If no usable price is present
    """
    if isinstance(raw, PriceQuote):
        return PriceQuote(_to_price(raw.price, floor), _to_volume(raw.volume), raw.timestamp)
    if isinstance(raw, Observation):
        return PriceQuote(_to_price(raw.price, floor), _to_volume(raw.volume), raw.timestamp)
    if isinstance(raw, Mapping):
        timestamp = raw.get("timestamp")
        return PriceQuote(
            price=_to_price(_first(raw, PRICE_KEYS), floor),
            volume=_to_volume(_first(raw, VOLUME_KEYS)),
            timestamp=_to_timestamp(timestamp) if timestamp is not None else None,
        )
    if isinstance(raw, Real):
        return PriceQuote(price=_to_price(raw, floor))
    raise ValueError(f"Unsupported quote type: {type(raw).__name__}")


def adapt_history(
    raw: Iterable[Any],
    timeframe: Timeframe,
    policy: TimeframePolicy,
    anchor_price: float,
    floor: float = 0.01,
    window: int = 20,
) -> List[Observation]:
    """
    Normalize historical provider output into a window of observations.

    Points are sorted, duplicate timestamps keep the last value, the window is
    trimmed to the newest ``policy.retained_points`` and labels and derived
    fields are recomputed for ``timeframe``.

    Raises:
        ValueError: If the provider returned no usable points
    """
    if raw is None:
        raise ValueError("Provider returned no data")

    by_timestamp = {}
    for item in raw:
        if isinstance(item, Observation):
            timestamp = _to_timestamp(item.timestamp)
            price = _to_price(item.price, floor)
            volume = _to_volume(item.volume) or 0
        elif isinstance(item, Mapping):
            timestamp = _to_timestamp(item.get("timestamp"))
            price = _to_price(_first(item, PRICE_KEYS), floor)
            volume = _to_volume(_first(item, VOLUME_KEYS)) or 0
        else:
            raise ValueError(f"Unsupported observation type: {type(item).__name__}")

        by_timestamp[timestamp] = Observation(
            timestamp=timestamp,
            price=price,
            display_label=format_display_label(timestamp, timeframe),
            volume=volume,
        )

    if not by_timestamp:
        raise ValueError("Provider returned no observations")

    ordered = [by_timestamp[ts] for ts in sorted(by_timestamp)]
    ordered = ordered[-policy.retained_points :]
    return apply_derived_fields(ordered, anchor_price, window)


def fetch_history(
    provider: HistoricalDataProvider,
    timeframe: Timeframe,
    policy: TimeframePolicy,
    anchor_price: float,
    symbol: Optional[str] = None,
    floor: float = 0.01,
    window: int = 20,
) -> List[Observation]:
    """Call a historical provider and adapt its output.

    Raises:
        ProviderError: If the call fails or returns unusable data
    """
    try:
        return adapt_history(
            provider(timeframe), timeframe, policy, anchor_price, floor, window
        )
    except Exception as e:
        raise ProviderError("historical", str(e), symbol=symbol, cause=e) from e


class ProviderPoller:
    """Polls a realtime provider on its own timer and keeps the latest quote.

    Ticks take the quote with :meth:`take_quote`; a slow or failing provider
    never holds up the tick timer.
    """

    def __init__(
        self,
        provider: RealtimeDataProvider,
        symbol: str,
        timers: TimerBackend,
        interval_ms: int = 1000,
        on_error: Optional[Callable[[ProviderError], None]] = None,
        floor: float = 0.01,
        on_recover: Optional[Callable[[], None]] = None,
    ):
        self.provider = provider
        self.symbol = symbol
        self.timers = timers
        self.interval_ms = interval_ms
        self.on_error = on_error
        self.on_recover = on_recover
        self.floor = floor
        self.last_error: Optional[ProviderError] = None
        self._quote: Optional[PriceQuote] = None
        self._timer: Optional[TimerHandle] = None
        self._lock = threading.Lock()
        self.logger = logger.bind(service="provider_poller", symbol=symbol)

    @property
    def running(self) -> bool:
        return self._timer is not None

    def start(self) -> None:
        if self._timer is not None:
            return
        self._timer = self.timers.call_every(
            self.interval_ms,
            self.poll_once,
            name=f"{self.symbol}:provider",
            executor=PROVIDER_EXECUTOR,
        )

    def stop(self) -> None:
        self.timers.cancel(self._timer)
        self._timer = None
        with self._lock:
            self._quote = None

    def poll_once(self) -> Optional[PriceQuote]:
        """Fetch one quote; failures are reported, never raised."""
        try:
            quote = adapt_quote(self.provider(self.symbol), self.floor)
        except Exception as e:
            error = ProviderError("realtime", str(e), symbol=self.symbol, cause=e)
            self.last_error = error
            self.logger.warning("Realtime provider failed", error=str(e))
            if self.on_error is not None:
                self.on_error(error)
            return None

        with self._lock:
            self._quote = quote
        if self.last_error is not None:
            self.last_error = None
            self.logger.info("Realtime provider recovered")
            if self.on_recover is not None:
                self.on_recover()
        return quote

    def take_quote(self) -> Optional[PriceQuote]:
        """Return the newest unconsumed quote, if any."""
        with self._lock:
            quote, self._quote = self._quote, None
        return quote
