"""Subscription facade consumed by the rendering layer."""

import threading
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from ..config.logging import get_logger
from ..config.settings import Settings, get_settings
from ..core.models import SeriesSnapshot
from ..exceptions import SubscriptionNotFoundError
from ..scheduler import SchedulerTimerBackend, create_scheduler
from ..timers import TimerBackend
from .alert_service import AlertState
from .stream_engine import StreamEngine, SubscriptionConfig

logger = get_logger(__name__)


@dataclass(frozen=True)
class SubscriptionHandle:
    """Identifies one live subscription."""

    subscription_id: str
    symbol: str


HandleLike = Union[SubscriptionHandle, str]


class MarketSimulator:
    """Creates and tears down independent streams.

    Subscriptions share nothing but the timer backend; each owns its own
    series, alert state and timers.
    """

    def __init__(
        self,
        timers: Optional[TimerBackend] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        if timers is None:
            timers = SchedulerTimerBackend(
                create_scheduler(
                    max_workers=self.settings.scheduler_max_workers,
                    provider_workers=self.settings.provider_max_workers,
                )
            )
        self.timers = timers
        self._engines: Dict[str, StreamEngine] = {}
        self._lock = threading.Lock()
        self.logger = logger.bind(service="market_simulator")

    def subscribe(self, config: SubscriptionConfig) -> SubscriptionHandle:
        """
        Start a stream and return its handle.

        Args:
            config: Subscription configuration with callbacks and providers

        Returns:
            SubscriptionHandle for later calls
        """
        engine = StreamEngine(config, self.timers, self.settings)
        handle = SubscriptionHandle(subscription_id=uuid.uuid4().hex, symbol=config.symbol)
        engine.start()
        with self._lock:
            self._engines[handle.subscription_id] = engine

        self.logger.info(
            "Subscription started",
            subscription_id=handle.subscription_id,
            symbol=config.symbol,
        )
        return handle

    def change_timeframe(self, handle: HandleLike, timeframe) -> None:
        self._engine(handle).change_timeframe(timeframe)

    def unsubscribe(self, handle: HandleLike) -> bool:
        """Stop a stream. Returns False if the handle was already gone."""
        subscription_id = self._subscription_id(handle)
        with self._lock:
            engine = self._engines.pop(subscription_id, None)
        if engine is None:
            return False
        engine.stop()
        self.logger.info("Subscription ended", subscription_id=subscription_id)
        return True

    def snapshot(self, handle: HandleLike) -> Optional[SeriesSnapshot]:
        return self._engine(handle).snapshot()

    def alert_state(self, handle: HandleLike) -> AlertState:
        return self._engine(handle).alert_state

    def dismiss_tutorial(self, handle: HandleLike) -> None:
        self._engine(handle).dismiss_tutorial()

    @property
    def active_subscriptions(self) -> List[str]:
        with self._lock:
            return list(self._engines)

    def shutdown(self) -> None:
        """Stop every stream and the scheduler thread if this simulator owns one."""
        for subscription_id in self.active_subscriptions:
            self.unsubscribe(subscription_id)
        if isinstance(self.timers, SchedulerTimerBackend):
            self.timers.shutdown(wait=False)

    def _subscription_id(self, handle: HandleLike) -> str:
        if isinstance(handle, SubscriptionHandle):
            return handle.subscription_id
        return str(handle)

    def _engine(self, handle: HandleLike) -> StreamEngine:
        subscription_id = self._subscription_id(handle)
        with self._lock:
            engine = self._engines.get(subscription_id)
        if engine is None:
            raise SubscriptionNotFoundError(subscription_id)
        return engine
