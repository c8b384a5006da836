#!/usr/bin/env python3
"""
Shared mixing clock for the audio graph.

Time is derived from the number of frames the engine has rendered, so
parameter automation, source scheduling and the control scheduler all agree
on one time base. The clock only counts while running; a suspended engine
holds it where it is.
"""

import threading
import logging

logger = logging.getLogger(__name__)


class AudioClock:
    """Frame counter advanced by the render path"""

    def __init__(self, sample_rate: int = 44100):
        if sample_rate <= 0:
            raise ValueError(f"Sample rate must be positive, got {sample_rate}")
        self.sample_rate = sample_rate
        self._frames = 0
        self._running = False
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            self._running = True

    def stop(self) -> None:
        with self._lock:
            self._running = False

    def is_running(self) -> bool:
        return self._running

    def update_frame_count(self, frames: int) -> None:
        """Count `frames` rendered frames; ignored while the clock is held"""
        with self._lock:
            if self._running:
                self._frames += frames

    def advance_seconds(self, seconds: float) -> None:
        """Move a running clock forward without rendering (offline tools and tests)"""
        self.update_frame_count(int(round(seconds * self.sample_rate)))

    @property
    def total_frames(self) -> int:
        return self._frames

    def get_current_time(self) -> float:
        return self._frames / self.sample_rate

    @property
    def now(self) -> float:
        return self.get_current_time()

    def __repr__(self):
        state = "running" if self._running else "held"
        return f"AudioClock({self.now:.3f}s, {state})"
