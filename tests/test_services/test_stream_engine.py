"""Tests for the per-subscription stream engine."""

from datetime import timedelta
from itertools import chain, repeat
from unittest.mock import Mock, patch

import pytest

from marketsim.core.models import Timeframe, Trend, UpdateMode
from marketsim.core.series_builder import apply_derived_fields
from marketsim.exceptions import ProviderError
from marketsim.services.alert_service import AlertSeverity
from marketsim.services.preferences import TUTORIAL_SEEN_KEY, InMemoryPreferenceStore
from marketsim.services.stream_engine import StreamEngine, SubscriptionConfig


@pytest.fixture
def make_engine(manual_timers, test_settings, recorder, reference_instant):
    """Factory for engines wired to the fake clock and the recorder."""

    def factory(**overrides):
        values = {
            "anchor_price_initial": 250.50,
            "timeframe": "1D",
            "symbol": "ECFM",
            "tick_callback": recorder.on_tick,
            "alert_callback": recorder.on_alert,
            "error_callback": recorder.on_error,
            "seed": 42,
            "reference_instant": reference_instant,
        }
        values.update(overrides)
        return StreamEngine(SubscriptionConfig(**values), manual_timers, test_settings)

    return factory


def assert_consistent(snapshot):
    """Current price, derived fields and summary agree with the window."""
    observations = list(snapshot.observations)
    assert snapshot.current_price == observations[-1].price
    assert observations == apply_derived_fields(observations, snapshot.anchor_price)
    assert snapshot.change_percent == observations[-1].change_percent
    timestamps = [o.timestamp for o in observations]
    assert all(a < b for a, b in zip(timestamps, timestamps[1:]))


class TestBackfill:
    """Test the initial window."""

    def test_one_day_scenario(self, make_engine, recorder):
        """Test a 250.50 one-day backfill of 24 hourly points."""
        engine = make_engine()

        snapshot = engine.start()

        assert len(snapshot.observations) == 24
        assert snapshot.observations[23].price == snapshot.current_price
        assert snapshot.anchor_price == 250.50
        assert snapshot.timeframe is Timeframe.ONE_DAY
        assert recorder.snapshots == [snapshot]
        assert_consistent(snapshot)

    def test_summary_attached(self, make_engine):
        """Test the window summary travels with the snapshot."""
        snapshot = make_engine().start()

        prices = [o.price for o in snapshot.observations]
        assert snapshot.summary.high == max(prices)
        assert snapshot.summary.low == min(prices)
        assert snapshot.summary.total_volume == sum(o.volume for o in snapshot.observations)

    def test_zero_anchor(self, make_engine, manual_timers, recorder):
        """Test a zero anchor leaves change percent undefined and never alerts."""
        engine = make_engine(anchor_price_initial=0.0)
        engine.start()
        manual_timers.advance(10_000)

        for snapshot in recorder.snapshots:
            assert snapshot.change_percent is None
            assert all(o.price >= 0.01 for o in snapshot.observations)
        assert recorder.alerts == []

    def test_start_twice_rejected(self, make_engine):
        """Test a stream cannot be started twice."""
        engine = make_engine()
        engine.start()

        with pytest.raises(RuntimeError):
            engine.start()


class TestAppendMode:
    """Test append-and-trim ticking."""

    def test_tick_appends_one_point(self, make_engine, manual_timers):
        """Test one tick shifts the window by one sample interval."""
        engine = make_engine()
        engine.start()
        before = engine.state

        manual_timers.advance(2000)
        after = engine.state

        assert len(after.observations) == 24
        assert [o.timestamp for o in after.observations[:-1]] == [
            o.timestamp for o in before.observations[1:]
        ]
        assert after.observations[-1].timestamp == before.observations[-1].timestamp + timedelta(
            hours=1
        )
        assert after.current_price == after.observations[-1].price

    def test_window_trimming(self, make_engine, manual_timers):
        """Test the oldest points drop out first and the length stays fixed."""
        engine = make_engine()
        engine.start()
        original = [o.timestamp for o in engine.state.observations]

        manual_timers.advance(5 * 2000)
        current = {o.timestamp for o in engine.state.observations}

        assert len(current) == 24
        assert not current & set(original[:5])
        assert set(original[5:]) <= current

        manual_timers.advance(25 * 2000)
        assert len(engine.state.observations) == 24
        assert not current & set(original)

    def test_every_snapshot_consistent(self, make_engine, manual_timers, recorder):
        """Test derived fields and trend after every tick."""
        make_engine().start()

        manual_timers.advance(40 * 2000)

        assert len(recorder.snapshots) == 41
        for previous, snapshot in zip(recorder.snapshots, recorder.snapshots[1:]):
            assert_consistent(snapshot)
            expected = Trend.UP if snapshot.current_price >= previous.current_price else Trend.DOWN
            assert snapshot.trend is expected

    def test_failed_tick_leaves_state_untouched(self, make_engine, manual_timers):
        """Test a tick that fails midway does not commit anything."""
        engine = make_engine()
        engine.start()
        before = engine.state

        with patch.object(engine.builder, "observation_at", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                manual_timers.advance(2000)

        assert engine.state is before

    def test_callback_failure_does_not_stop_stream(self, make_engine, manual_timers):
        """Test a raising subscriber callback is logged and ticking continues."""
        engine = make_engine(tick_callback=Mock(side_effect=ValueError("render failed")))
        engine.start()
        first = engine.state

        manual_timers.advance(4000)

        assert engine.state is not first
        assert engine.config.tick_callback.call_count == 3


class TestRegenerateMode:
    """Test full-window regeneration."""

    def test_tick_replaces_window(self, make_engine, manual_timers, recorder, reference_instant):
        """Test a regenerated window keeps its size and anchor."""
        engine = make_engine(update_mode="regenerate")
        engine.start()

        manual_timers.advance(2000)
        snapshot = recorder.last

        assert engine.update_mode is UpdateMode.REGENERATE
        assert len(snapshot.observations) == 24
        assert snapshot.observations[-1].timestamp == reference_instant + timedelta(hours=1)
        assert snapshot.anchor_price == 250.50
        assert_consistent(snapshot)
        previous = recorder.snapshots[-2]
        expected = Trend.UP if snapshot.current_price >= previous.current_price else Trend.DOWN
        assert snapshot.trend is expected


class TestSmoothedMode:
    """Test sub-stepped transitions."""

    def test_transition_interpolates_linearly(self, make_engine, manual_timers, recorder):
        """Test the new point walks from the old price to the target."""
        engine = make_engine(update_mode=UpdateMode.SMOOTHED)
        engine.start()
        start_price = engine.state.current_price

        manual_timers.advance(2000)
        assert engine.in_transition
        assert engine.state.current_price == start_price
        target = engine._transition_to
        count = len(recorder.snapshots)

        manual_timers.advance(1800)
        steps = recorder.snapshots[count:]

        assert len(steps) == 9
        for k, snapshot in enumerate(steps, start=1):
            expected = round(start_price + (target - start_price) * k / 10, 2)
            assert snapshot.current_price == expected
            assert len(snapshot.observations) == 24
            assert_consistent(snapshot)

    def test_next_tick_snaps_previous_transition(self, make_engine, manual_timers):
        """Test an unfinished transition lands on its target before the next tick."""
        engine = make_engine(update_mode="smoothed")
        engine.start()
        manual_timers.advance(2000)
        target = engine._transition_to

        manual_timers.advance(2000)

        assert engine.state.observations[-2].price == target
        assert engine.in_transition
        assert manual_timers.pending_count() == 2

    def test_teardown_mid_transition(self, make_engine, manual_timers, recorder):
        """Test stopping mid-transition leaves zero pending timers."""
        engine = make_engine(update_mode="smoothed")
        engine.start()
        manual_timers.advance(2500)
        assert engine.in_transition

        engine.stop()
        count = len(recorder.snapshots)
        manual_timers.advance(20_000)

        assert manual_timers.pending_count() == 0
        assert len(recorder.snapshots) == count
        assert engine.state is None
        assert engine.snapshot() is None

    def test_timeframe_change_cancels_transition(self, make_engine, manual_timers):
        """Test a timeframe switch cancels the transition timer."""
        engine = make_engine(update_mode="smoothed")
        engine.start()
        manual_timers.advance(2500)

        engine.change_timeframe("1W")

        assert not engine.in_transition
        assert manual_timers.pending_names() == ["ECFM:settle"]


class TestTimeframeChange:
    """Test rebuilding on timeframe switches."""

    def test_rebuild_around_current_price(self, make_engine, manual_timers, recorder):
        """Test the new window is anchored on the price at switch time."""
        engine = make_engine()
        engine.start()
        manual_timers.advance(3000)
        price_at_switch = engine.state.current_price

        engine.change_timeframe("1W")
        count = len(recorder.snapshots)
        manual_timers.advance(299)

        assert len(recorder.snapshots) == count
        assert engine.state.timeframe is Timeframe.ONE_DAY
        assert engine.timeframe is Timeframe.ONE_WEEK

        manual_timers.advance(1)
        snapshot = recorder.last
        assert snapshot.timeframe is Timeframe.ONE_WEEK
        assert len(snapshot.observations) == 7
        assert snapshot.anchor_price == price_at_switch
        assert_consistent(snapshot)

        manual_timers.advance(3 * 2000)
        assert all(s.timeframe is Timeframe.ONE_WEEK for s in recorder.snapshots[count:])
        assert all(len(s.observations) == 7 for s in recorder.snapshots[count:])

    def test_old_tick_cancelled_before_new_scheduled(self, make_engine, manual_timers):
        """Test the tick timer discipline across a switch."""
        engine = make_engine()
        engine.start()

        engine.change_timeframe("1M")
        manual_timers.advance(300)

        actions = manual_timers.actions_for("ECFM:tick")
        assert [a for a, _ in actions] == ["schedule", "cancel", "schedule"]
        assert actions[0][1] == actions[1][1]

    def test_change_after_stop_rejected(self, make_engine):
        """Test a stopped stream refuses timeframe changes."""
        engine = make_engine()
        engine.start()
        engine.stop()

        with pytest.raises(RuntimeError):
            engine.change_timeframe("1W")

    def test_invalid_timeframe(self, make_engine):
        """Test unknown timeframe names are rejected before anything changes."""
        engine = make_engine()
        engine.start()

        with pytest.raises(ValueError):
            engine.change_timeframe("2W")
        assert engine.scheduler.timeframe is Timeframe.ONE_DAY


class TestAlerts:
    """Test alerting from the stream."""

    def test_large_move_raises_alert_and_dismisses(self, make_engine, manual_timers, recorder):
        """Test a realtime jump fires an info alert that clears after five seconds."""
        engine = make_engine(realtime_provider=Mock(return_value=300.0))
        engine.start()

        manual_timers.advance(2000)

        assert engine.state.current_price == 300.0
        assert recorder.alerts[-1].active
        assert recorder.alerts[-1].severity is AlertSeverity.INFO
        assert "19.76%" in recorder.alerts[-1].message

        manual_timers.advance(5000)
        assert not recorder.alerts[-1].active
        assert len([a for a in recorder.alerts if a.active]) == 1

    def test_unsubscribe_with_pending_alert(self, make_engine, manual_timers):
        """Test teardown cancels the alert timer along with everything else."""
        engine = make_engine(realtime_provider=Mock(return_value=200.0))
        engine.start()
        manual_timers.advance(2000)
        assert engine.alert_state.active

        engine.stop()

        assert manual_timers.pending_count() == 0
        assert not engine.alert_state.active


class TestProviders:
    """Test pluggable providers and their failure handling."""

    def test_historical_provider_used_for_backfill(self, make_engine, reference_instant):
        """Test provider history replaces synthetic backfill."""
        rows = [
            {"timestamp": reference_instant - timedelta(hours=i), "price": 240.0 + i}
            for i in range(24)
        ]
        engine = make_engine(historical_provider=Mock(return_value=rows))

        snapshot = engine.start()

        assert [o.price for o in snapshot.observations] == [240.0 + i for i in reversed(range(24))]
        assert snapshot.anchor_price == 250.50
        assert_consistent(snapshot)

    def test_historical_failure_falls_back(self, make_engine, manual_timers, recorder):
        """Test a failing history provider is reported and synthetic data is used."""
        engine = make_engine(historical_provider=Mock(side_effect=ConnectionError("offline")))

        snapshot = engine.start()

        assert len(snapshot.observations) == 24
        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], ProviderError)
        assert engine.alert_state.severity is AlertSeverity.ERROR

        manual_timers.advance(2000)
        assert len(recorder.snapshots) == 2

    def test_realtime_failure_keeps_streaming(self, make_engine, manual_timers, recorder):
        """Test a failing realtime provider never stalls ticks."""
        engine = make_engine(realtime_provider=Mock(side_effect=TimeoutError("slow")))
        engine.start()

        manual_timers.advance(4000)

        assert len(recorder.errors) == 4
        assert len(recorder.snapshots) == 3
        assert_consistent(recorder.last)

    def test_realtime_quote_volume_adapted(self, make_engine, manual_timers):
        """Test quote volume is carried onto the new observation."""
        engine = make_engine(realtime_provider=Mock(return_value={"price": 251.0, "volume": 5}))
        engine.start()

        manual_timers.advance(2000)

        assert engine.state.observations[-1].price == 251.0
        assert engine.state.observations[-1].volume == 5


class TestTutorialPreference:
    """Test the tutorial flag and its persistence collaborator."""

    def test_seen_tutorial_hidden(self, make_engine):
        """Test a stored preference hides the tutorial."""
        preferences = InMemoryPreferenceStore({TUTORIAL_SEEN_KEY: True})

        snapshot = make_engine(show_tutorial=True, preferences=preferences).start()

        assert snapshot.show_tutorial is False

    def test_dismiss_persists(self, make_engine):
        """Test dismissing writes through the preference store."""
        preferences = InMemoryPreferenceStore()
        engine = make_engine(show_tutorial=True, preferences=preferences)
        assert engine.start().show_tutorial is True

        engine.dismiss_tutorial()

        assert preferences.get(TUTORIAL_SEEN_KEY) is True
        assert engine.snapshot().show_tutorial is False


class TestSubscriptionConfig:
    """Test config defaults from settings."""

    def test_from_settings(self, test_settings):
        """Test application defaults and overrides."""
        config = SubscriptionConfig.from_settings(test_settings, timeframe="5Y")

        assert config.symbol == test_settings.default_symbol
        assert config.anchor_price_initial == test_settings.default_anchor_price
        assert config.timeframe == "5Y"
        assert config.update_mode == "append"


def stopping_callback(recorder, engines, after):
    """Tick callback that stops the stream once ``after`` snapshots arrived."""

    def on_tick(snapshot):
        recorder.on_tick(snapshot)
        if len(recorder.snapshots) == after:
            engines[0].stop()

    return on_tick


class TestTeardownFromCallbacks:
    """Test subscribers stopping or re-timing the stream from their own callbacks."""

    @pytest.mark.parametrize("mode", ["append", "regenerate", "smoothed"])
    def test_stop_inside_tick_callback(
        self, make_engine, manual_timers, recorder, fixed_random, mode
    ):
        """Test a tick that stops its own stream leaves nothing behind."""
        engines = []
        engine = make_engine(
            update_mode=mode,
            tick_callback=stopping_callback(recorder, engines, after=2),
            random_source=fixed_random(1.0),
        )
        engines.append(engine)
        engine.start()

        manual_timers.advance(2000)

        assert manual_timers.pending_count() == 0
        assert not any(alert.active for alert in recorder.alerts)
        assert engine.state is None

        manual_timers.advance(10_000)
        assert len(recorder.snapshots) == 2

    def test_stop_inside_transition_step(self, make_engine, manual_timers, recorder):
        """Test stopping from a sub-step snapshot cancels the transition."""
        engines = []
        engine = make_engine(
            update_mode="smoothed",
            tick_callback=stopping_callback(recorder, engines, after=4),
        )
        engines.append(engine)
        engine.start()

        manual_timers.advance(3000)

        assert len(recorder.snapshots) == 4
        assert manual_timers.pending_count() == 0
        assert not engine.in_transition

    def test_stop_inside_alert_callback(self, make_engine, manual_timers, recorder, fixed_random):
        """Test the dismiss timer is cancelled when the alert callback stops the stream."""
        engines = []

        def on_alert(alert_state):
            recorder.on_alert(alert_state)
            if alert_state.active:
                engines[0].stop()

        engine = make_engine(alert_callback=on_alert, random_source=fixed_random(1.0))
        engines.append(engine)
        engine.start()

        manual_timers.advance(2000)

        assert recorder.alerts[0].active
        assert manual_timers.pending_count() == 0
        assert not engine.alert_state.active

    def test_stop_inside_rebuild_callback(self, make_engine, manual_timers, recorder):
        """Test stopping from the rebuilt snapshot never starts the new tick timer."""
        engines = []

        def on_tick(snapshot):
            recorder.on_tick(snapshot)
            if snapshot.timeframe is Timeframe.ONE_WEEK:
                engines[0].stop()

        engine = make_engine(tick_callback=on_tick)
        engines.append(engine)
        engine.start()
        engine.change_timeframe("1W")

        manual_timers.advance(300)

        assert recorder.last.timeframe is Timeframe.ONE_WEEK
        assert manual_timers.pending_count() == 0

    def test_stop_inside_error_callback_during_start(self, make_engine, manual_timers):
        """Test a stream stopped while backfilling never starts ticking."""
        engines = []
        engine = make_engine(
            historical_provider=Mock(side_effect=ConnectionError("offline")),
            error_callback=lambda error: engines[0].stop(),
        )
        engines.append(engine)

        assert engine.start() is None
        assert manual_timers.pending_count() == 0
        assert not engine.running

    def test_change_timeframe_inside_smoothed_tick(self, make_engine, manual_timers, recorder):
        """Test re-timing from a tick callback starts no transition on the old window."""
        engines = []

        def on_tick(snapshot):
            recorder.on_tick(snapshot)
            if len(recorder.snapshots) == 2:
                engines[0].change_timeframe("1W")

        engine = make_engine(update_mode="smoothed", tick_callback=on_tick)
        engines.append(engine)
        engine.start()

        manual_timers.advance(2000)

        assert not engine.in_transition
        assert manual_timers.pending_names() == ["ECFM:settle"]

        manual_timers.advance(300)
        assert recorder.last.timeframe is Timeframe.ONE_WEEK
        assert len(recorder.last.observations) == 7
        assert manual_timers.pending_names() == ["ECFM:tick"]


class TestProviderFailureAlerts:
    """Test how provider outages interact with threshold alerts."""

    def test_threshold_alert_survives_outage(
        self, make_engine, manual_timers, recorder, fixed_random
    ):
        """Test repeated failures neither replace nor re-raise over a threshold alert."""
        engine = make_engine(
            realtime_provider=Mock(side_effect=RuntimeError("down")),
            random_source=fixed_random(1.0),
        )
        engine.start()

        manual_timers.advance(2000)
        assert engine.alert_state.severity is AlertSeverity.INFO

        manual_timers.advance(4999)
        assert engine.alert_state.active
        assert engine.alert_state.severity is AlertSeverity.INFO

        manual_timers.advance(1)
        assert not engine.alert_state.active

        manual_timers.advance(10_000)
        active = [alert.severity for alert in recorder.alerts if alert.active]
        assert active == [AlertSeverity.ERROR, AlertSeverity.INFO]
        assert len(recorder.errors) == 17

    def test_failure_does_not_preempt_threshold_alert(self, make_engine, manual_timers, recorder):
        """Test an outage starting during a threshold alert is reported but not displayed."""
        provider = Mock(side_effect=chain([300.0], repeat(RuntimeError("down"))))
        engine = make_engine(realtime_provider=provider)
        engine.start()

        manual_timers.advance(2000)

        assert len(recorder.errors) == 1
        assert engine.alert_state.severity is AlertSeverity.INFO
        assert all(alert.severity is not AlertSeverity.ERROR for alert in recorder.alerts)

    def test_recovery_rearms_error_alert(self, make_engine, manual_timers, recorder):
        """Test a new outage after recovery raises a fresh error alert."""
        provider = Mock(
            side_effect=chain([RuntimeError("down"), 250.0], repeat(RuntimeError("down again")))
        )
        engine = make_engine(realtime_provider=provider)
        engine.start()

        manual_timers.advance(3000)

        errors_shown = [
            alert for alert in recorder.alerts
            if alert.active and alert.severity is AlertSeverity.ERROR
        ]
        assert len(errors_shown) == 2
        assert len(recorder.errors) == 2


class TestSparkline:
    """Test the sparkline carried on each snapshot."""

    def test_sparkline_within_window_range(self, make_engine, test_settings):
        """Test the sparkline stays inside the window's price range."""
        snapshot = make_engine().start()

        assert len(snapshot.sparkline) == test_settings.sparkline_points
        assert all(
            snapshot.summary.low <= value <= snapshot.summary.high
            for value in snapshot.sparkline
        )

    def test_sparkline_steady_during_transition(self, make_engine, manual_timers, recorder):
        """Test sub-steps reuse the sparkline drawn at the tick."""
        engine = make_engine(update_mode="smoothed")
        engine.start()

        manual_timers.advance(3800)
        tick_snapshot = recorder.snapshots[1]

        assert all(s.sparkline == tick_snapshot.sparkline for s in recorder.snapshots[2:])
