"""
Single-loop task scheduler backed by a min-heap of next fire times.

One heap entry per repeating task (every agent tick, the sync tick, the
heat-zone refresh) replaces one OS timer per task. In production a daemon
thread sleeps until the earliest entry is due; tests drive the same heap
with a :class:`ManualClock` through :meth:`Scheduler.advance`.

Cancellation only flags the handle. Flagged entries are dropped when they
surface at the top of the heap, so cancelling is O(1), idempotent, and
never waits for a task that is currently running.
"""

from __future__ import annotations

import heapq
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)


class Clock(ABC):
    @abstractmethod
    def now_ms(self) -> float: ...


class MonotonicClock(Clock):
    def now_ms(self) -> float:
        return time.monotonic() * 1000.0


class ManualClock(Clock):
    """Virtual clock for tests and offline runs."""

    def __init__(self, start_ms: float = 0.0) -> None:
        self._now = start_ms

    def now_ms(self) -> float:
        return self._now

    def set(self, now_ms: float) -> None:
        if now_ms < self._now:
            raise ValueError("ManualClock cannot go backwards")
        self._now = now_ms


@dataclass(eq=False)
class TaskHandle:
    """A repeating task. ``callback`` receives the elapsed ms since its last run."""

    name: str
    interval_ms: float
    callback: Callable[[float], None]
    last_run_ms: float
    cancelled: bool = False
    runs: int = 0


@dataclass(order=True)
class _Entry:
    due_ms: float
    seq: int
    handle: TaskHandle = field(compare=False)


class Scheduler:
    """Runs repeating tasks in due-time order on one loop."""

    def __init__(self, clock: Clock | None = None) -> None:
        self.clock = clock or MonotonicClock()
        self._heap: list[_Entry] = []
        self._seq = 0
        self._cond = threading.Condition()
        self._thread: threading.Thread | None = None
        self._closed = False

    def now_ms(self) -> float:
        return self.clock.now_ms()

    @property
    def threaded(self) -> bool:
        return not isinstance(self.clock, ManualClock)

    # ---- Task management ----

    def schedule_repeating(
        self,
        name: str,
        interval_ms: float,
        callback: Callable[[float], None],
        first_delay_ms: float | None = None,
    ) -> TaskHandle:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        now = self.clock.now_ms()
        handle = TaskHandle(name, interval_ms, callback, last_run_ms=now)
        delay = interval_ms if first_delay_ms is None else first_delay_ms
        with self._cond:
            self._push(now + delay, handle)
            self._cond.notify()
        return handle

    def cancel(self, handle: TaskHandle | None) -> None:
        """Stop a task from firing again. Safe to call repeatedly or with None."""
        if handle is None:
            return
        handle.cancelled = True

    @property
    def pending(self) -> int:
        """Number of live (not cancelled) tasks."""
        with self._cond:
            return sum(1 for e in self._heap if not e.handle.cancelled)

    def next_due_ms(self) -> float | None:
        with self._cond:
            self._discard_cancelled()
            return self._heap[0].due_ms if self._heap else None

    def _push(self, due_ms: float, handle: TaskHandle) -> None:
        self._seq += 1
        heapq.heappush(self._heap, _Entry(due_ms, self._seq, handle))

    def _discard_cancelled(self) -> None:
        while self._heap and self._heap[0].handle.cancelled:
            heapq.heappop(self._heap)

    # ---- Execution ----

    def run_due(self) -> int:
        """Run every task due at the current clock time. Returns tasks run."""
        now = self.clock.now_ms()
        ran = 0
        while True:
            with self._cond:
                self._discard_cancelled()
                if not self._heap or self._heap[0].due_ms > now:
                    return ran
                entry = heapq.heappop(self._heap)
            self._fire(entry, now)
            ran += 1

    def _fire(self, entry: _Entry, now: float) -> None:
        handle = entry.handle
        elapsed = now - handle.last_run_ms
        handle.last_run_ms = now
        try:
            handle.callback(elapsed)
        except Exception:
            logger.exception("Scheduled task %s failed", handle.name)
        handle.runs += 1
        if handle.cancelled:
            return
        # Drift-free: next due is relative to the planned time, but never
        # in the past if a run overran.
        with self._cond:
            self._push(max(entry.due_ms + handle.interval_ms, now), handle)

    def advance(self, ms: float) -> int:
        """Move a ManualClock forward, firing tasks at their exact due times."""
        if not isinstance(self.clock, ManualClock):
            raise TypeError("advance() requires a ManualClock")
        target = self.clock.now_ms() + ms
        ran = 0
        while True:
            due = self.next_due_ms()
            if due is None or due > target:
                break
            self.clock.set(max(due, self.clock.now_ms()))
            ran += self.run_due()
        self.clock.set(target)
        return ran

    # ---- Background driver ----

    def start(self) -> None:
        """Start the driver thread (no-op for manual clocks or if running)."""
        if not self.threaded:
            return
        with self._cond:
            if self._thread is not None and self._thread.is_alive():
                return
            self._closed = False
            self._thread = threading.Thread(
                target=self._run_forever, name="roadsim-scheduler", daemon=True,
            )
            self._thread.start()

    def _run_forever(self) -> None:
        while True:
            with self._cond:
                if self._closed:
                    return
                self._discard_cancelled()
                if not self._heap:
                    self._cond.wait()
                    continue
                delay_ms = self._heap[0].due_ms - self.clock.now_ms()
                if delay_ms > 0:
                    self._cond.wait(delay_ms / 1000.0)
                    continue
            self.run_due()

    def close(self) -> None:
        """Cancel everything and let the driver thread exit. Does not join."""
        with self._cond:
            for entry in self._heap:
                entry.handle.cancelled = True
            self._heap.clear()
            self._closed = True
            self._cond.notify_all()
