"""Threshold alerts raised from the price stream."""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ..config.logging import get_logger
from ..timers import TimerBackend, TimerHandle

logger = get_logger(__name__)

DEFAULT_THRESHOLD_PERCENT = 5.0
DEFAULT_DISPLAY_MS = 5000


class AlertSeverity(Enum):
    """Alert severity levels."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Alert:
    """Alert data container."""

    symbol: str
    severity: AlertSeverity
    title: str
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AlertState:
    """The single alert currently on display, if any."""

    active: bool = False
    title: str = ""
    message: str = ""
    severity: AlertSeverity = AlertSeverity.INFO
    expires_at: Optional[datetime] = None
    alert: Optional[Alert] = None

    @classmethod
    def from_alert(cls, alert: Alert, expires_at: datetime) -> "AlertState":
        return cls(
            active=True,
            title=alert.title,
            message=alert.message,
            severity=alert.severity,
            expires_at=expires_at,
            alert=alert,
        )


class AlertRule:
    """Fires when a price moves more than a percentage away from a reference."""

    def __init__(self, threshold_percent: float = DEFAULT_THRESHOLD_PERCENT):
        if threshold_percent <= 0:
            raise ValueError("threshold_percent must be positive")
        self.threshold_percent = threshold_percent

    def evaluate(
        self, previous_anchor: float, new_price: float, symbol: str = ""
    ) -> Optional[Alert]:
        """
        Check a new price against the reference price.

        Args:
            previous_anchor: Reference price the move is measured from
            new_price: Latest price
            symbol: Instrument the alert is about

        Returns:
            Alert when the move exceeds the threshold, otherwise None
        """
        if previous_anchor is None or previous_anchor <= 0:
            return None

        change = new_price - previous_anchor
        change_percent = change / previous_anchor * 100
        if abs(change_percent) <= self.threshold_percent:
            return None

        name = symbol or "Price"
        if change > 0:
            severity = AlertSeverity.INFO
            title = f"{name} price surge"
            direction = "rose"
        else:
            severity = AlertSeverity.WARNING
            title = f"{name} price drop"
            direction = "fell"

        message = (
            f"{name} {direction} {abs(change_percent):.2f}% "
            f"from ${previous_anchor:.2f} to ${new_price:.2f}"
        )

        return Alert(
            symbol=symbol,
            severity=severity,
            title=title,
            message=message,
            metadata={
                "previous_anchor": previous_anchor,
                "price": new_price,
                "change_percent": round(change_percent, 4),
                "threshold_percent": self.threshold_percent,
            },
        )


class AlertManager:
    """Holds the live alert and its auto-dismiss timer.

    A new alert cancels the previous dismiss timer before starting its own.
    """

    def __init__(
        self,
        timers: TimerBackend,
        on_change: Optional[Callable[[AlertState], None]] = None,
        display_ms: int = DEFAULT_DISPLAY_MS,
        name: str = "alerts",
        lock: Optional[threading.RLock] = None,
    ):
        self.timers = timers
        self.on_change = on_change
        self.display_ms = display_ms
        self.name = name
        self._state = AlertState()
        self._dismiss_timer: Optional[TimerHandle] = None
        self._lock = lock or threading.RLock()
        self.logger = logger.bind(service="alert_manager", owner=name)

    @property
    def state(self) -> AlertState:
        return self._state

    def raise_alert(self, alert: Alert) -> AlertState:
        """Show ``alert``, replacing whatever was on display."""
        with self._lock:
            self.timers.cancel(self._dismiss_timer)
            expires_at = datetime.now(timezone.utc) + timedelta(milliseconds=self.display_ms)
            self._state = AlertState.from_alert(alert, expires_at)
            self._dismiss_timer = self.timers.call_later(
                self.display_ms, self.clear, name=f"{self.name}:dismiss"
            )

            self.logger.info(
                "Alert raised",
                symbol=alert.symbol,
                severity=alert.severity.value,
                title=alert.title,
            )
            self._emit()
            return self._state

    def clear(self) -> None:
        """Dismiss the live alert."""
        with self._lock:
            self.timers.cancel(self._dismiss_timer)
            self._dismiss_timer = None
            if not self._state.active:
                return
            self._state = AlertState()
            self.logger.debug("Alert cleared")
            self._emit()

    def cancel(self) -> None:
        """Drop the dismiss timer without notifying; used on teardown."""
        with self._lock:
            self.timers.cancel(self._dismiss_timer)
            self._dismiss_timer = None
            self._state = AlertState()

    def _emit(self) -> None:
        if self.on_change is not None:
            self.on_change(self._state)
