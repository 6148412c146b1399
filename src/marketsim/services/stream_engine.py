"""Per-subscription streaming of a simulated price series."""

import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, Set, Tuple, Union

from ..config.logging import get_logger, log_performance
from ..config.settings import Settings, get_settings
from ..core.metrics import summarize
from ..core.models import (
    Observation,
    SeriesSnapshot,
    SeriesState,
    Timeframe,
    TimeframePolicy,
    Trend,
    UpdateMode,
)
from ..core.price_process import PriceProcess
from ..core.random_source import RandomSource, SeededRandomSource
from ..core.series_builder import SeriesBuilder, apply_derived_fields
from ..core.sparkline import generate_sparkline
from ..exceptions import ProviderError
from ..scheduler import TimeframeScheduler
from ..timers import TimerBackend, TimerHandle
from .alert_service import Alert, AlertManager, AlertRule, AlertSeverity, AlertState
from .preferences import TUTORIAL_SEEN_KEY, PreferenceStore
from .providers import (
    HistoricalDataProvider,
    ProviderPoller,
    RealtimeDataProvider,
    fetch_history,
)

logger = get_logger(__name__)


@dataclass
class SubscriptionConfig:
    """Everything a rendering layer supplies when it subscribes."""

    anchor_price_initial: float
    timeframe: Union[Timeframe, str] = Timeframe.ONE_DAY
    symbol: str = "SIM"
    tick_callback: Optional[Callable[[SeriesSnapshot], None]] = None
    alert_callback: Optional[Callable[[AlertState], None]] = None
    error_callback: Optional[Callable[[ProviderError], None]] = None
    update_mode: Union[UpdateMode, str] = UpdateMode.APPEND
    historical_provider: Optional[HistoricalDataProvider] = None
    realtime_provider: Optional[RealtimeDataProvider] = None
    random_source: Optional[RandomSource] = None
    seed: Optional[int] = None
    reference_instant: Optional[datetime] = None
    show_tutorial: bool = False
    preferences: Optional[PreferenceStore] = None

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "SubscriptionConfig":
        """Build a config from application defaults."""
        values = {
            "anchor_price_initial": settings.default_anchor_price,
            "timeframe": settings.default_timeframe,
            "symbol": settings.default_symbol,
            "update_mode": settings.update_mode,
            "seed": settings.random_seed,
        }
        values.update(overrides)
        return cls(**values)


class StreamEngine:
    """Backfills, ticks and re-times the series of one subscription.

    Every mutation builds a complete new :class:`SeriesState` before it is
    assigned, so consumers never see a half-applied tick.
    """

    def __init__(
        self,
        config: SubscriptionConfig,
        timers: TimerBackend,
        settings: Optional[Settings] = None,
    ):
        self.config = config
        self.timers = timers
        self.settings = settings or get_settings()
        self.symbol = config.symbol
        self.update_mode = UpdateMode(
            config.update_mode.value
            if isinstance(config.update_mode, UpdateMode)
            else str(config.update_mode).lower()
        )
        self.logger = logger.bind(service="stream_engine", symbol=self.symbol)

        self._lock = threading.RLock()
        self.random_source = config.random_source or SeededRandomSource(
            config.seed if config.seed is not None else self.settings.random_seed
        )
        self.sparkline_random = SeededRandomSource(
            config.seed if config.seed is not None else self.settings.random_seed
        )
        self.price_process = PriceProcess(self.random_source, floor=self.settings.price_floor)
        self.builder = SeriesBuilder(
            self.price_process,
            self.random_source,
            volume_cap=self.settings.volume_cap,
            moving_average_window=self.settings.moving_average_window,
        )
        self.alert_rule = AlertRule(self.settings.alert_threshold_percent)
        self.alert_manager = AlertManager(
            timers,
            on_change=lambda alert_state: self._notify(config.alert_callback, alert_state),
            display_ms=int(self.settings.alert_display_seconds * 1000),
            name=f"{self.symbol}:alert",
            lock=self._lock,
        )
        self.scheduler = TimeframeScheduler(
            timers,
            settle_delay_ms=self.settings.timeframe_settle_delay_ms,
            lock=self._lock,
            name=self.symbol,
        )
        self.poller: Optional[ProviderPoller] = None
        if config.realtime_provider is not None:
            self.poller = ProviderPoller(
                config.realtime_provider,
                self.symbol,
                timers,
                interval_ms=self.settings.provider_poll_interval_ms,
                on_error=self._report_provider_error,
                on_recover=lambda: self._on_provider_recovered("realtime"),
                floor=self.settings.price_floor,
            )

        self.state: Optional[SeriesState] = None
        self.show_tutorial = config.show_tutorial and not (
            config.preferences is not None
            and config.preferences.get(TUTORIAL_SEEN_KEY, False)
        )
        self._started = False
        self._stopped = False
        self._alert_reference: Optional[float] = None
        self._failing_providers: Set[str] = set()

        self._transition_timer: Optional[TimerHandle] = None
        self._transition_from = 0.0
        self._transition_to = 0.0
        self._transition_step = 0

    # ------------------------------------------------------------------
    # Lifecycle

    @property
    def running(self) -> bool:
        return self._started and not self._stopped

    @property
    def timeframe(self) -> Optional[Timeframe]:
        """Selected timeframe; may lead the committed state while a switch settles."""
        return self.scheduler.timeframe

    @property
    def in_transition(self) -> bool:
        return self._transition_timer is not None

    def start(self) -> Optional[SeriesSnapshot]:
        """Backfill the initial window and start ticking.

        Returns None when a subscriber callback stopped the stream during startup.
        """
        with self._lock:
            if self._started:
                raise RuntimeError("Stream already started")
            self._started = True

            timeframe = Timeframe.parse(self.config.timeframe)
            policy = TimeframeScheduler.policy_for(timeframe)
            anchor = max(0.0, float(self.config.anchor_price_initial))

            observations = self._backfill(
                timeframe, policy, anchor, self.config.reference_instant
            )
            if self._stopped:
                return None
            self._alert_reference = anchor
            self._commit(timeframe, observations, anchor, previous_price=None)
            if self._stopped:
                return None

            self.scheduler.start(timeframe, self._on_tick, self._on_rebuild)
            if self.poller is not None:
                self.poller.start()

            self.logger.info(
                "Stream started",
                timeframe=timeframe.value,
                anchor_price=anchor,
                update_mode=self.update_mode.value,
            )
            return self.snapshot()

    def change_timeframe(self, timeframe) -> None:
        """Switch timeframe; the window is rebuilt around the current price."""
        timeframe = Timeframe.parse(timeframe)
        with self._lock:
            if not self.running:
                raise RuntimeError("Stream is not running")
            self._cancel_transition()
            self.scheduler.change_timeframe(timeframe)

    def stop(self) -> None:
        """Cancel every timer this stream owns and drop its state."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            self._cancel_transition()
            self.scheduler.stop()
            if self.poller is not None:
                self.poller.stop()
            self.alert_manager.cancel()
            self.state = None
            self.logger.info("Stream stopped")

    def dismiss_tutorial(self) -> None:
        """Hide the tutorial and persist that through the preference store."""
        with self._lock:
            self.show_tutorial = False
            if self.config.preferences is not None:
                self.config.preferences.set(TUTORIAL_SEEN_KEY, True)

    # ------------------------------------------------------------------
    # Views

    def snapshot(self) -> Optional[SeriesSnapshot]:
        """Plain-data view of the committed state."""
        with self._lock:
            state = self.state
            if state is None:
                return None
            last = state.last
            return SeriesSnapshot(
                symbol=self.symbol,
                timeframe=state.timeframe,
                observations=state.observations,
                current_price=state.current_price,
                trend=state.trend,
                anchor_price=state.anchor_price,
                change=last.change if last else None,
                change_percent=last.change_percent if last else None,
                summary=summarize(state.observations),
                sparkline=state.sparkline,
                show_tutorial=self.show_tutorial,
            )

    @property
    def alert_state(self) -> AlertState:
        return self.alert_manager.state

    # ------------------------------------------------------------------
    # Timer callbacks

    def _on_tick(self, policy: TimeframePolicy) -> None:
        if not self.running or self.state is None:
            return
        generation = self.scheduler.generation

        if self.update_mode is UpdateMode.REGENERATE:
            self._regenerate(policy, generation)
        elif self.update_mode is UpdateMode.SMOOTHED:
            self._finish_transition(generation)
            if self._is_current(generation):
                self._begin_transition(policy, generation)
        else:
            self._append(policy, generation)

    def _on_rebuild(self, timeframe: Timeframe, policy: TimeframePolicy) -> None:
        if not self.running or self.state is None:
            return

        anchor = self.state.current_price
        observations = self._backfill(timeframe, policy, anchor, None)
        if not self.running:
            return
        self._alert_reference = anchor
        self._commit(timeframe, observations, anchor, previous_price=None)

        self.logger.info(
            "Timeframe changed",
            timeframe=timeframe.value,
            anchor_price=anchor,
            points=len(observations),
        )

    # ------------------------------------------------------------------
    # Update strategies

    def _regenerate(self, policy: TimeframePolicy, generation: int) -> None:
        state = self.state
        reference = state.last.timestamp + timedelta(minutes=policy.sample_interval_minutes)
        observations = self.builder.build(
            state.timeframe, state.anchor_price, policy, reference
        )
        self._commit(
            state.timeframe,
            observations,
            state.anchor_price,
            previous_price=state.current_price,
        )
        if self._is_current(generation):
            self._evaluate_alert(observations[-1].price)

    def _append(self, policy: TimeframePolicy, generation: int) -> None:
        price, volume = self._next_price(policy)
        self._commit_appended(policy, price, volume)
        if self._is_current(generation):
            self._evaluate_alert(price)

    def _begin_transition(self, policy: TimeframePolicy, generation: int) -> None:
        start_price = self.state.current_price
        target, volume = self._next_price(policy)
        self._commit_appended(policy, start_price, volume)
        if not self._is_current(generation):
            return

        steps = self.settings.transition_steps
        self._transition_from = start_price
        self._transition_to = target
        self._transition_step = 0
        self._transition_timer = self.timers.call_every(
            max(1, policy.tick_interval_ms // steps),
            self._advance_transition,
            name=f"{self.symbol}:transition",
        )

    def _advance_transition(self) -> None:
        with self._lock:
            if self._transition_timer is None or not self.running:
                return
            steps = self.settings.transition_steps
            self._transition_step += 1
            fraction = min(1.0, self._transition_step / steps)
            price = round(
                self._transition_from
                + (self._transition_to - self._transition_from) * fraction,
                2,
            )
            self._set_last_price(price, refresh_sparkline=False)

            # A subscriber may have stopped or re-timed the stream
            if self._transition_timer is None:
                return
            if self._transition_step >= steps:
                self._cancel_transition()
                self._evaluate_alert(price)

    def _finish_transition(self, generation: int) -> None:
        """Snap an in-flight transition to its target before the next tick."""
        if self._transition_timer is None:
            return
        target = self._transition_to
        self._cancel_transition()
        if self.state.current_price != target:
            self._set_last_price(target, refresh_sparkline=False)
        if self._is_current(generation):
            self._evaluate_alert(target)

    def _cancel_transition(self) -> None:
        self.timers.cancel(self._transition_timer)
        self._transition_timer = None

    def _is_current(self, generation: int) -> bool:
        """False once a callback has stopped the stream or changed its timeframe."""
        return self.running and self.scheduler.generation == generation

    # ------------------------------------------------------------------
    # Helpers

    def _backfill(
        self,
        timeframe: Timeframe,
        policy: TimeframePolicy,
        anchor: float,
        reference_instant: Optional[datetime],
    ) -> List[Observation]:
        started = time.perf_counter()
        observations = None
        source = "synthetic"

        if self.config.historical_provider is not None:
            try:
                observations = fetch_history(
                    self.config.historical_provider,
                    timeframe,
                    policy,
                    anchor,
                    symbol=self.symbol,
                    floor=self.settings.price_floor,
                    window=self.settings.moving_average_window,
                )
                source = "historical_provider"
                self._on_provider_recovered("historical")
            except ProviderError as e:
                self._report_provider_error(e)

        if observations is None:
            observations = self.builder.build(timeframe, anchor, policy, reference_instant)

        log_performance(
            "backfill",
            (time.perf_counter() - started) * 1000,
            symbol=self.symbol,
            timeframe=timeframe.value,
            source=source,
        )
        return observations

    def _next_price(self, policy: TimeframePolicy):
        if self.poller is not None:
            quote = self.poller.take_quote()
            if quote is not None:
                return quote.price, quote.volume
        price = self.price_process.next(
            self.state.current_price, self.state.anchor_price, policy
        )
        return price, None

    def _commit_appended(self, policy: TimeframePolicy, price: float, volume: Optional[int]) -> None:
        state = self.state
        timestamp = state.last.timestamp + timedelta(minutes=policy.sample_interval_minutes)
        new_point = self.builder.observation_at(timestamp, price, state.timeframe, volume)
        window = (list(state.observations) + [new_point])[-policy.retained_points :]
        self._commit(
            state.timeframe, window, state.anchor_price, previous_price=state.current_price
        )

    def _set_last_price(self, price: float, refresh_sparkline: bool = True) -> None:
        state = self.state
        previous = state.current_price
        observations = list(state.observations)
        observations[-1] = replace(observations[-1], price=price)
        self._commit(
            state.timeframe,
            observations,
            state.anchor_price,
            previous_price=previous,
            refresh_sparkline=refresh_sparkline,
        )

    def _commit(
        self,
        timeframe: Timeframe,
        observations: List[Observation],
        anchor: float,
        previous_price: Optional[float],
        refresh_sparkline: bool = True,
    ) -> None:
        derived = apply_derived_fields(
            observations, anchor, self.settings.moving_average_window
        )
        current = derived[-1].price
        if previous_price is None:
            previous_price = derived[-2].price if len(derived) > 1 else anchor
        if refresh_sparkline or self.state is None:
            sparkline = self._sparkline(derived)
        else:
            sparkline = self.state.sparkline

        self.state = SeriesState(
            timeframe=timeframe,
            observations=tuple(derived),
            anchor_price=anchor,
            current_price=current,
            trend=Trend.UP if current >= previous_price else Trend.DOWN,
            sparkline=sparkline,
        )
        self._notify(self.config.tick_callback, self.snapshot())

    def _sparkline(self, observations: List[Observation]) -> Tuple[float, ...]:
        prices = [o.price for o in observations]
        values = generate_sparkline(
            self.settings.sparkline_points, min(prices), max(prices), self.sparkline_random
        )
        return tuple(round(value, 2) for value in values)

    def _evaluate_alert(self, price: float) -> None:
        alert = self.alert_rule.evaluate(self._alert_reference, price, self.symbol)
        if alert is None:
            return
        self._alert_reference = price
        self.alert_manager.raise_alert(alert)

    def _report_provider_error(self, error: ProviderError) -> None:
        with self._lock:
            if self._stopped:
                return
            self.logger.warning(
                "Data provider failed, continuing with synthetic data",
                provider=error.provider,
                error=error.message,
            )
            self._notify(self.config.error_callback, error)
            if self._stopped or error.provider in self._failing_providers:
                return
            self._failing_providers.add(error.provider)

            # Threshold alerts keep their full display time
            current = self.alert_manager.state
            if current.active and current.severity is not AlertSeverity.ERROR:
                return
            self.alert_manager.raise_alert(
                Alert(
                    symbol=self.symbol,
                    severity=AlertSeverity.ERROR,
                    title="Data provider unavailable",
                    message=error.message,
                    metadata={"provider": error.provider},
                )
            )

    def _on_provider_recovered(self, provider: str) -> None:
        with self._lock:
            if provider in self._failing_providers:
                self._failing_providers.discard(provider)
                self.logger.info("Data provider recovered", provider=provider)

    def _notify(self, callback: Optional[Callable[[Any], None]], payload: Any) -> None:
        if callback is None:
            return
        try:
            callback(payload)
        except Exception as e:
            self.logger.error(
                "Subscriber callback failed",
                callback=getattr(callback, "__name__", repr(callback)),
                error=str(e),
                exc_info=True,
            )
