#!/usr/bin/env python3
"""
Control-thread scheduler.

Every Deck, Session and director operation runs on the single control
thread owned by ControlScheduler. Timers are kept in a heap ordered by due
time and insertion order; other threads hand work over with call_soon().
Tests drive the same scheduler deterministically with run_due() and a
time source bound to the engine clock.
"""

import heapq
import itertools
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


@dataclass
class ScheduledCall:
    """Handle for a pending callback; cancel() is safe from any thread"""
    when: float
    callback: Callable
    args: Tuple[Any, ...] = ()
    name: str = ""
    interval: Optional[float] = None
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def repeating(self) -> bool:
        return self.interval is not None


class ControlScheduler:
    """Heap-backed timer loop for the control thread"""

    # Longest the loop sleeps before re-checking the time source
    MAX_WAIT_SECONDS = 0.01

    def __init__(self, time_source: Callable[[], float] = time.monotonic):
        self._time_source = time_source
        self._heap: List[Tuple[float, int, ScheduledCall]] = []
        self._counter = itertools.count()
        self._lock = threading.RLock()
        self._wakeup = threading.Event()

        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

        self._error_callbacks: List[Callable] = []
        self._stats = {
            "calls_scheduled": 0,
            "calls_executed": 0,
            "calls_failed": 0,
            "calls_cancelled": 0,
        }

        logger.debug("ControlScheduler initialized")

    def now(self) -> float:
        return self._time_source()

    # -- scheduling ----------------------------------------------------------

    def call_later(self, delay: float, callback: Callable, *args, name: str = "") -> ScheduledCall:
        if delay < 0:
            raise ValueError(f"Delay cannot be negative: {delay}")
        call = ScheduledCall(self.now() + delay, callback, args, name or _callable_name(callback))
        self._push(call)
        return call

    def call_every(self, interval: float, callback: Callable, *args, name: str = "") -> ScheduledCall:
        """Run callback every `interval` seconds, first run one interval from now"""
        if interval <= 0:
            raise ValueError(f"Interval must be positive: {interval}")
        call = ScheduledCall(self.now() + interval, callback, args, name or _callable_name(callback),
                             interval=interval)
        self._push(call)
        return call

    def call_soon(self, callback: Callable, *args, name: str = "") -> ScheduledCall:
        """Queue callback for the next pass of the control loop (thread-safe)"""
        return self.call_later(0.0, callback, *args, name=name)

    def _push(self, call: ScheduledCall) -> None:
        with self._lock:
            heapq.heappush(self._heap, (call.when, next(self._counter), call))
            self._stats["calls_scheduled"] += 1
        self._wakeup.set()

    def pending(self) -> List[ScheduledCall]:
        """Live (not cancelled) calls in due order"""
        with self._lock:
            return [entry[2] for entry in sorted(self._heap) if not entry[2].cancelled]

    def next_due_time(self) -> Optional[float]:
        with self._lock:
            self._drop_cancelled_head()
            return self._heap[0][0] if self._heap else None

    def _drop_cancelled_head(self) -> None:
        while self._heap and self._heap[0][2].cancelled:
            heapq.heappop(self._heap)
            self._stats["calls_cancelled"] += 1

    # -- execution -----------------------------------------------------------

    def run_due(self) -> int:
        """Run every call due at the current time. Returns the number run."""
        executed = 0
        while True:
            with self._lock:
                self._drop_cancelled_head()
                if not self._heap or self._heap[0][0] > self.now():
                    return executed
                _, _, call = heapq.heappop(self._heap)
                if call.repeating:
                    next_when = call.when + call.interval
                    if next_when <= self.now():
                        # Fell behind; skip the missed ticks rather than bursting
                        next_when = self.now() + call.interval
                    call.when = next_when
                    heapq.heappush(self._heap, (call.when, next(self._counter), call))
            self._execute(call)
            executed += 1

    def _execute(self, call: ScheduledCall) -> None:
        try:
            call.callback(*call.args)
            self._stats["calls_executed"] += 1
        except Exception as e:
            self._stats["calls_failed"] += 1
            logger.error(f"ControlScheduler: error in '{call.name}': {e}", exc_info=True)
            self._notify_error_callbacks(e)

    def register_error_callback(self, callback: Callable) -> None:
        self._error_callbacks.append(callback)

    def _notify_error_callbacks(self, error: Exception) -> None:
        for callback in self._error_callbacks:
            try:
                callback(error)
            except Exception as e:
                logger.error(f"Error in error callback: {e}")

    # -- control thread ------------------------------------------------------

    def start(self) -> None:
        if self._running:
            logger.warning("ControlScheduler already running")
            return
        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="deckmix-control")
        self._thread.start()
        logger.info("ControlScheduler started")

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._stop_event.set()
        self._wakeup.set()
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
            if self._thread.is_alive():
                logger.warning("ControlScheduler thread did not stop cleanly")
        logger.info("ControlScheduler stopped")

    def is_running(self) -> bool:
        return self._running

    def in_control_thread(self) -> bool:
        return self._thread is threading.current_thread()

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_due()
            due = self.next_due_time()
            wait = self.MAX_WAIT_SECONDS if due is None else min(max(due - self.now(), 0.0),
                                                                 self.MAX_WAIT_SECONDS)
            self._wakeup.wait(wait)
            self._wakeup.clear()

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            stats = dict(self._stats)
            stats["pending"] = sum(1 for entry in self._heap if not entry[2].cancelled)
        stats["running"] = self._running
        return stats


def _callable_name(callback: Callable) -> str:
    return getattr(callback, "__qualname__", None) or getattr(callback, "__name__", repr(callback))
