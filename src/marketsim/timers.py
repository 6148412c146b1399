"""Timer backends that drive ticks, transitions and alert dismissal."""

import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

TimerCallback = Callable[[], None]


@dataclass(frozen=True)
class TimerHandle:
    """Opaque reference to a scheduled timer."""

    timer_id: str
    name: str
    interval_ms: Optional[int] = None

    @property
    def periodic(self) -> bool:
        return self.interval_ms is not None


class TimerBackend(ABC):
    """Start/cancel operations every timer owner goes through."""

    @abstractmethod
    def call_later(
        self, delay_ms: int, callback: TimerCallback, name: str = "timer"
    ) -> TimerHandle:
        """Run ``callback`` once after ``delay_ms``."""

    @abstractmethod
    def call_every(
        self,
        interval_ms: int,
        callback: TimerCallback,
        name: str = "timer",
        executor: str = "default",
    ) -> TimerHandle:
        """Run ``callback`` every ``interval_ms`` until cancelled."""

    @abstractmethod
    def cancel(self, handle: Optional[TimerHandle]) -> bool:
        """Cancel a timer. Returns True if it was still pending."""

    @abstractmethod
    def pending_count(self) -> int:
        """Number of timers that may still fire."""


@dataclass
class _ManualTimer:
    handle: TimerHandle
    callback: TimerCallback
    due_ms: int
    sequence: int


@dataclass
class TimerRecord:
    """One entry of the manual backend's history."""

    action: str  # "schedule", "cancel" or "fire"
    timer_id: str
    name: str
    at_ms: int


class ManualTimerBackend(TimerBackend):
    """Fake clock: timers only fire when :meth:`advance` moves time forward.

    Timers due at the same instant fire in the order they were scheduled.
    """

    def __init__(self):
        self.now_ms = 0
        self.history: List[TimerRecord] = []
        self._timers: Dict[str, _ManualTimer] = {}
        self._ids = itertools.count(1)

    def _schedule(
        self, delay_ms: int, callback: TimerCallback, name: str, interval_ms: Optional[int]
    ) -> TimerHandle:
        sequence = next(self._ids)
        handle = TimerHandle(timer_id=f"manual-{sequence}", name=name, interval_ms=interval_ms)
        self._timers[handle.timer_id] = _ManualTimer(
            handle=handle,
            callback=callback,
            due_ms=self.now_ms + max(0, int(delay_ms)),
            sequence=sequence,
        )
        self._record("schedule", handle)
        return handle

    def call_later(self, delay_ms, callback, name="timer"):
        return self._schedule(delay_ms, callback, name, None)

    def call_every(self, interval_ms, callback, name="timer", executor="default"):
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        return self._schedule(interval_ms, callback, name, int(interval_ms))

    def cancel(self, handle):
        if handle is None:
            return False
        timer = self._timers.pop(handle.timer_id, None)
        if timer is None:
            return False
        self._record("cancel", handle)
        return True

    def pending_count(self):
        return len(self._timers)

    def pending_names(self) -> List[str]:
        return sorted(t.handle.name for t in self._timers.values())

    def is_pending(self, handle: Optional[TimerHandle]) -> bool:
        return handle is not None and handle.timer_id in self._timers

    def advance(self, ms: int) -> int:
        """
        Move the clock forward, firing every timer that comes due.

        Args:
            ms: Milliseconds to advance

        Returns:
            Number of callbacks fired
        """
        target = self.now_ms + ms
        fired = 0
        while True:
            timer = self._next_due(target)
            if timer is None:
                break
            self.now_ms = timer.due_ms
            if timer.handle.periodic:
                timer.due_ms += timer.handle.interval_ms
            else:
                del self._timers[timer.handle.timer_id]
            self._record("fire", timer.handle)
            fired += 1
            timer.callback()
        self.now_ms = target
        return fired

    def _next_due(self, target: int) -> Optional[_ManualTimer]:
        due = [t for t in self._timers.values() if t.due_ms <= target]
        if not due:
            return None
        return min(due, key=lambda t: (t.due_ms, t.sequence))

    def _record(self, action: str, handle: TimerHandle) -> None:
        self.history.append(
            TimerRecord(action=action, timer_id=handle.timer_id, name=handle.name, at_ms=self.now_ms)
        )

    def actions_for(self, name_prefix: str) -> List[Tuple[str, str]]:
        """History entries as ``(action, timer_id)`` for timers whose name starts with a prefix."""
        return [(r.action, r.timer_id) for r in self.history if r.name.startswith(name_prefix)]
