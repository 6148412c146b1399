"""Scheduler configuration and timeframe-driven tick scheduling."""

import threading
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler

from .config.logging import get_logger
from .core.models import Timeframe, TimeframePolicy
from .core.policies import policy_for
from .timers import TimerBackend, TimerHandle

logger = get_logger(__name__)

PROVIDER_EXECUTOR = "providers"


def create_scheduler(max_workers: int = 1, provider_workers: int = 2) -> BackgroundScheduler:
    """
    Create and configure a BackgroundScheduler for stream timers.

    Args:
        max_workers: Threads running tick, transition and alert callbacks
        provider_workers: Threads running provider polling jobs

    Returns:
        Configured BackgroundScheduler instance
    """
    jobstores = {"default": MemoryJobStore()}

    # A single default worker keeps tick callbacks serial
    executors = {
        "default": ThreadPoolExecutor(max_workers=max_workers),
        PROVIDER_EXECUTOR: ThreadPoolExecutor(max_workers=provider_workers),
    }

    job_defaults = {
        "coalesce": True,  # Collapse missed ticks into one
        "max_instances": 1,
        "misfire_grace_time": 1,
    }

    scheduler = BackgroundScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone="UTC",
    )

    scheduler.add_listener(job_executed_listener, EVENT_JOB_EXECUTED)
    scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)

    return scheduler


def job_executed_listener(event):
    """Log successful job executions."""
    logger.debug(
        "Timer job executed",
        job_id=event.job_id,
        scheduled_run_time=str(event.scheduled_run_time),
    )


def job_error_listener(event):
    """Log job execution errors."""
    logger.error(
        "Timer job crashed",
        job_id=event.job_id,
        error=str(event.exception),
        traceback=event.traceback,
    )


class SchedulerTimerBackend(TimerBackend):
    """Timer backend running on an APScheduler BackgroundScheduler.

    A cancelled handle never reaches its callback, even when the job was
    already handed to an executor.
    """

    def __init__(self, scheduler: Optional[BackgroundScheduler] = None):
        self.scheduler = scheduler or create_scheduler()
        self._handles = {}
        self._lock = threading.Lock()

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Timer scheduler started")

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._handles.clear()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Timer scheduler shutdown complete")

    def call_later(self, delay_ms, callback, name="timer"):
        handle = TimerHandle(timer_id=f"{name}:{uuid.uuid4().hex[:12]}", name=name)

        def run_once():
            with self._lock:
                live = self._handles.pop(handle.timer_id, None)
            if live is not None:
                callback()

        with self._lock:
            self._handles[handle.timer_id] = handle
        self.start()
        self.scheduler.add_job(
            func=run_once,
            trigger="date",
            run_date=datetime.now(timezone.utc) + timedelta(milliseconds=delay_ms),
            id=handle.timer_id,
            name=name,
        )
        return handle

    def call_every(self, interval_ms, callback, name="timer", executor="default"):
        handle = TimerHandle(
            timer_id=f"{name}:{uuid.uuid4().hex[:12]}", name=name, interval_ms=interval_ms
        )

        def run_periodic():
            with self._lock:
                live = handle.timer_id in self._handles
            if live:
                callback()

        with self._lock:
            self._handles[handle.timer_id] = handle
        self.start()
        self.scheduler.add_job(
            func=run_periodic,
            trigger="interval",
            seconds=interval_ms / 1000,
            id=handle.timer_id,
            name=name,
            executor=executor,
        )
        return handle

    def cancel(self, handle):
        if handle is None:
            return False
        with self._lock:
            live = self._handles.pop(handle.timer_id, None)
        if live is None:
            return False
        try:
            self.scheduler.remove_job(handle.timer_id)
        except JobLookupError:
            pass  # One-shot job already dispatched
        return True

    def pending_count(self):
        with self._lock:
            return len(self._handles)


class SchedulerState(Enum):
    """Lifecycle of a timeframe scheduler."""

    IDLE = "idle"
    RUNNING = "running"


class TimeframeScheduler:
    """Owns the main tick timer of one stream and swaps it on timeframe changes.

    Every main timer is bound to a generation number; a callback from a
    superseded generation does nothing. Old timers are always cancelled
    before the replacement is created.
    """

    def __init__(
        self,
        timers: TimerBackend,
        settle_delay_ms: int = 300,
        lock: Optional[threading.RLock] = None,
        name: str = "stream",
    ):
        self.timers = timers
        self.settle_delay_ms = settle_delay_ms
        self.name = name
        self.state = SchedulerState.IDLE
        self.timeframe: Optional[Timeframe] = None
        self.policy: Optional[TimeframePolicy] = None
        self._lock = lock or threading.RLock()
        self._generation = 0
        self._main_timer: Optional[TimerHandle] = None
        self._settle_timer: Optional[TimerHandle] = None
        self._on_tick: Optional[Callable[[TimeframePolicy], None]] = None
        self._on_rebuild: Optional[Callable[[Timeframe, TimeframePolicy], None]] = None
        self.logger = logger.bind(scheduler=name)

    @staticmethod
    def policy_for(timeframe) -> TimeframePolicy:
        return policy_for(timeframe)

    @property
    def running(self) -> bool:
        return self.state is SchedulerState.RUNNING

    @property
    def settling(self) -> bool:
        return self._settle_timer is not None

    @property
    def generation(self) -> int:
        return self._generation

    def start(
        self,
        timeframe,
        on_tick: Callable[[TimeframePolicy], None],
        on_rebuild: Callable[[Timeframe, TimeframePolicy], None],
    ) -> None:
        """
        Start ticking for a timeframe whose window is already built.

        Args:
            timeframe: Initial timeframe
            on_tick: Called with the policy the timer was started for
            on_rebuild: Called after a timeframe switch, before the new timer starts
        """
        with self._lock:
            if self.running:
                raise RuntimeError("Scheduler is already running")
            self._on_tick = on_tick
            self._on_rebuild = on_rebuild
            self.timeframe = Timeframe.parse(timeframe)
            self.policy = policy_for(self.timeframe)
            self.state = SchedulerState.RUNNING
            self._generation += 1
            self._start_main_timer()

            self.logger.info(
                "Scheduler started",
                timeframe=self.timeframe.value,
                tick_interval_ms=self.policy.tick_interval_ms,
            )

    def change_timeframe(self, timeframe) -> None:
        """Cancel the running timer, rebuild for ``timeframe`` and start a new timer."""
        with self._lock:
            if not self.running:
                raise RuntimeError("Scheduler is not running")

            self._cancel_timers()
            self._generation += 1
            self.timeframe = Timeframe.parse(timeframe)
            self.policy = policy_for(self.timeframe)

            self.logger.info(
                "Timeframe change scheduled",
                timeframe=self.timeframe.value,
                settle_delay_ms=self.settle_delay_ms,
            )

            if self.settle_delay_ms > 0:
                generation = self._generation
                self._settle_timer = self.timers.call_later(
                    self.settle_delay_ms,
                    lambda: self._activate(generation),
                    name=f"{self.name}:settle",
                )
            else:
                self._activate(self._generation)

    def stop(self) -> None:
        """Cancel every timer; no further ticks are delivered."""
        with self._lock:
            if not self.running:
                return
            self._cancel_timers()
            self._generation += 1
            self.state = SchedulerState.IDLE
            self.logger.info("Scheduler stopped")

    def _activate(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or not self.running:
                return
            self._settle_timer = None
            self._on_rebuild(self.timeframe, self.policy)
            # The rebuild callback may have stopped or re-timed the stream
            if generation != self._generation or not self.running:
                return
            self._start_main_timer()

    def _start_main_timer(self) -> None:
        generation = self._generation
        policy = self.policy

        def fire():
            with self._lock:
                if generation != self._generation or not self.running:
                    return
                self._on_tick(policy)

        self._main_timer = self.timers.call_every(
            policy.tick_interval_ms, fire, name=f"{self.name}:tick"
        )

    def _cancel_timers(self) -> None:
        self.timers.cancel(self._main_timer)
        self._main_timer = None
        self.timers.cancel(self._settle_timer)
        self._settle_timer = None
