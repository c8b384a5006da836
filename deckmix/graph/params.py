#!/usr/bin/env python3
"""
Automatable node parameters.

An AudioParam holds a time-ordered list of automation events anchored on the
shared AudioClock. The control thread schedules events; the render path
samples the resulting curve once per frame (gain) or once per render quantum
(filter frequency).
"""

import bisect
import math
import threading
from dataclasses import dataclass
from enum import Enum, auto
from typing import List, Optional, Tuple
import logging

import numpy as np

logger = logging.getLogger(__name__)


class AutomationType(Enum):
    """Kinds of automation events"""
    SET_VALUE = auto()
    LINEAR_RAMP = auto()
    EXPONENTIAL_RAMP = auto()
    SET_TARGET = auto()


_RAMPS = (AutomationType.LINEAR_RAMP, AutomationType.EXPONENTIAL_RAMP)


@dataclass
class AutomationEvent:
    """One scheduled change of a parameter curve"""
    kind: AutomationType
    time: float
    value: float
    time_constant: float = 0.0
    # Value the curve holds at `time` just before this event applies (SET_TARGET only)
    start_value: Optional[float] = None
    # Ramps scheduled with no earlier event interpolate from this point
    anchor_time: Optional[float] = None
    anchor_value: Optional[float] = None


class AudioParam:
    """
    A single automatable parameter (gain, frequency, delay time...).

    Semantics follow the usual audio-graph conventions: ramps interpolate from
    the previous event to their own end time, set_target approaches its target
    exponentially from the value in effect when it starts, and
    cancel_scheduled_values drops every event at or after the given time.
    """

    def __init__(self, name: str, default_value: float, clock, lock=None,
                 min_value: float = -math.inf, max_value: float = math.inf):
        self.name = name
        self.default_value = float(default_value)
        self.min_value = min_value
        self.max_value = max_value
        self._clock = clock
        self._lock = lock if lock is not None else threading.RLock()
        self._intrinsic = float(default_value)
        self._events: List[AutomationEvent] = []

    # -- scheduling ----------------------------------------------------------

    @property
    def value(self) -> float:
        """Current value of the curve at the clock's time"""
        return self.value_at(self._clock.now)

    @value.setter
    def value(self, new_value: float) -> None:
        self.set_value_at_time(new_value, self._clock.now)

    def set_value_at_time(self, value: float, start_time: float) -> "AudioParam":
        self._check_time(start_time)
        self._insert(AutomationEvent(AutomationType.SET_VALUE, float(start_time), float(value)))
        return self

    def linear_ramp_to_value_at_time(self, value: float, end_time: float) -> "AudioParam":
        self._check_time(end_time)
        self._insert(AutomationEvent(AutomationType.LINEAR_RAMP, float(end_time), float(value)))
        return self

    def exponential_ramp_to_value_at_time(self, value: float, end_time: float) -> "AudioParam":
        self._check_time(end_time)
        if value == 0:
            raise ValueError(f"{self.name}: exponential ramp target must be non-zero")
        self._insert(AutomationEvent(AutomationType.EXPONENTIAL_RAMP, float(end_time), float(value)))
        return self

    def set_target_at_time(self, target: float, start_time: float, time_constant: float) -> "AudioParam":
        self._check_time(start_time)
        if time_constant < 0:
            raise ValueError(f"{self.name}: time constant must be non-negative, got {time_constant}")
        self._insert(AutomationEvent(AutomationType.SET_TARGET, float(start_time), float(target),
                                     time_constant=float(time_constant)))
        return self

    def cancel_scheduled_values(self, cancel_time: float) -> "AudioParam":
        """Remove every event scheduled at or after cancel_time"""
        self._check_time(cancel_time)
        with self._lock:
            kept = [e for e in self._events if e.time < cancel_time]
            dropped = len(self._events) - len(kept)
            self._events = kept
        if dropped:
            logger.debug(f"AudioParam {self.name}: cancelled {dropped} event(s) from {cancel_time:.3f}s")
        return self

    @property
    def scheduled_events(self) -> Tuple[AutomationEvent, ...]:
        with self._lock:
            return tuple(self._events)

    def _check_time(self, when: float) -> None:
        if when < 0 or math.isnan(when):
            raise ValueError(f"{self.name}: automation time must be a non-negative number, got {when}")

    def _insert(self, event: AutomationEvent) -> None:
        with self._lock:
            times = [e.time for e in self._events]
            index = bisect.bisect_right(times, event.time)
            if index == 0 and event.kind in _RAMPS:
                now = self._clock.now
                event.anchor_time = min(now, event.time)
                event.anchor_value = float(self._evaluate(np.array([event.anchor_time]))[0])
            self._events.insert(index, event)
            self._refresh_start_values(index)

    def _refresh_start_values(self, first_index: int) -> None:
        for i in range(first_index, len(self._events)):
            event = self._events[i]
            if event.kind is not AutomationType.SET_TARGET:
                continue
            if i == 0:
                if event.start_value is None:
                    event.start_value = self._intrinsic
            else:
                event.start_value = float(self._hold(self._events[i - 1], np.array([event.time]))[0])

    # -- evaluation ----------------------------------------------------------

    def value_at(self, when: float) -> float:
        with self._lock:
            return float(self._evaluate(np.array([when], dtype=np.float64))[0])

    def values_for_block(self, start_time: float, frames: int, sample_rate: int) -> np.ndarray:
        """Per-frame parameter values for one render block"""
        with self._lock:
            if not self._events:
                return np.full(frames, self._clamp(self._intrinsic), dtype=np.float32)
            times = start_time + np.arange(frames, dtype=np.float64) / sample_rate
            return self._evaluate(times).astype(np.float32)

    def compact(self, before_time: float) -> None:
        """Drop events fully superseded by a later event at or before before_time"""
        with self._lock:
            times = [e.time for e in self._events]
            last = bisect.bisect_right(times, before_time) - 1
            if last >= 1:
                del self._events[:last]

    def _evaluate(self, times: np.ndarray) -> np.ndarray:
        events = self._events
        if not events:
            return np.full(times.shape, self._clamp(self._intrinsic), dtype=np.float64)

        event_times = np.array([e.time for e in events], dtype=np.float64)
        owner = np.searchsorted(event_times, times, side="right") - 1
        out = np.empty(times.shape, dtype=np.float64)

        for i in np.unique(owner):
            mask = owner == i
            t = times[mask]
            following = events[i + 1] if i + 1 < len(events) else None
            if following is not None and following.kind in _RAMPS:
                t0, v0 = self._ramp_origin(int(i))
                out[mask] = self._ramp(following, t0, v0, t)
            elif i < 0:
                out[mask] = self._intrinsic
            else:
                out[mask] = self._hold(events[i], t)

        return np.clip(out, self.min_value, self.max_value)

    def _ramp_origin(self, index: int) -> Tuple[float, float]:
        if index >= 0:
            previous = self._events[index]
            return previous.time, self._end_value(previous)
        first = self._events[0]
        if first.anchor_time is None:
            return first.time, self._intrinsic
        return first.anchor_time, first.anchor_value

    @staticmethod
    def _end_value(event: AutomationEvent) -> float:
        if event.kind is AutomationType.SET_TARGET:
            return event.start_value
        return event.value

    @staticmethod
    def _hold(event: AutomationEvent, t: np.ndarray) -> np.ndarray:
        if event.kind is AutomationType.SET_TARGET:
            if event.time_constant == 0:
                return np.full(t.shape, event.value)
            elapsed = np.maximum(t - event.time, 0.0)
            return event.value + (event.start_value - event.value) * np.exp(-elapsed / event.time_constant)
        return np.full(t.shape, event.value)

    @staticmethod
    def _ramp(event: AutomationEvent, t0: float, v0: float, t: np.ndarray) -> np.ndarray:
        duration = event.time - t0
        if duration <= 0:
            return np.full(t.shape, event.value)
        progress = np.clip((t - t0) / duration, 0.0, 1.0)
        if event.kind is AutomationType.LINEAR_RAMP:
            return v0 + (event.value - v0) * progress
        # Exponential ramps cannot cross or start from zero; hold the start value instead
        if v0 == 0 or (v0 < 0) != (event.value < 0):
            return np.where(progress < 1.0, v0, event.value)
        return v0 * np.power(event.value / v0, progress)

    def _clamp(self, value: float) -> float:
        return min(max(value, self.min_value), self.max_value)

    def __repr__(self):
        return f"AudioParam({self.name}={self.value:.4f}, events={len(self._events)})"
