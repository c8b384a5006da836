# deckmix/graph/engine.py

import threading
import time
from enum import Enum
from typing import Callable, Dict, List, Optional, Any
import logging

import numpy as np

from ..errors import InvalidStateError
from .buffer import AudioBuffer
from .clock import AudioClock
from .nodes import (
    AnalyserNode,
    AudioBufferSourceNode,
    AudioDestinationNode,
    BiquadFilterNode,
    ConvolverNode,
    DelayNode,
    GainNode,
    RenderQuantum,
)
from .ring_buffer import OutputRingBuffer

logger = logging.getLogger(__name__)


class EngineState(Enum):
    SUSPENDED = "suspended"
    RUNNING = "running"
    CLOSED = "closed"


class AudioGraphEngine:
    """
    Block-based audio graph host.

    Owns the node graph, the shared AudioClock and (optionally) a real-time
    output path: a producer thread renders into an OutputRingBuffer that the
    sounddevice callback drains. Offline callers use render() directly.

    The engine starts suspended. The clock only advances while running.
    Source `onended` callbacks are collected during a render and handed to the
    event dispatcher (normally the control scheduler's call_soon) after the
    engine lock is released.
    """

    def __init__(self, sample_rate: int = 44100, block_size: int = 512, channels: int = 2,
                 ring_buffer_seconds: float = 0.25):
        if sample_rate <= 0 or block_size <= 0:
            raise ValueError(f"Invalid engine format: {sample_rate} Hz, block {block_size}")
        self.sample_rate = int(sample_rate)
        self.block_size = int(block_size)
        self.channels = int(channels)
        self.ring_buffer_seconds = ring_buffer_seconds

        self.lock = threading.RLock()
        self.clock = AudioClock(self.sample_rate)
        self.destination = AudioDestinationNode(self, self.channels)

        self._state = EngineState.SUSPENDED
        self._block_index = 0
        self._taps: List[AnalyserNode] = []
        self._active_sources: List[AudioBufferSourceNode] = []
        self._ended: List[AudioBufferSourceNode] = []
        self._dispatcher: Optional[Callable] = None

        # Real-time output path
        self._stream = None
        self._ring: Optional[OutputRingBuffer] = None
        self._producer_thread: Optional[threading.Thread] = None
        self._producer_stop_event = threading.Event()

        self._stats = {
            "blocks_rendered": 0,
            "sources_started": 0,
            "sources_ended": 0,
            "callback_errors": 0,
            "producer_errors": 0,
        }

        logger.debug(f"AudioGraphEngine initialized: {self.sample_rate} Hz, block {self.block_size}, "
                     f"{self.channels} channels")

    # -- lifecycle -----------------------------------------------------------

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def current_time(self) -> float:
        return self.clock.now

    def resume(self) -> None:
        with self.lock:
            self._check_open()
            if self._state is EngineState.RUNNING:
                return
            self._state = EngineState.RUNNING
            self.clock.start()
        logger.info(f"AudioGraphEngine resumed at {self.clock.now:.3f}s")

    def suspend(self) -> None:
        with self.lock:
            self._check_open()
            if self._state is EngineState.SUSPENDED:
                return
            self._state = EngineState.SUSPENDED
            self.clock.stop()
        logger.info(f"AudioGraphEngine suspended at {self.clock.now:.3f}s")

    def close(self) -> None:
        self.stop()
        with self.lock:
            if self._state is EngineState.CLOSED:
                return
            self._state = EngineState.CLOSED
            self.clock.stop()
        logger.info("AudioGraphEngine closed")

    def set_event_dispatcher(self, dispatcher: Optional[Callable]) -> None:
        """dispatcher(fn, *args) hands ended-callbacks to the control thread"""
        self._dispatcher = dispatcher

    def _check_open(self) -> None:
        if self._state is EngineState.CLOSED:
            raise InvalidStateError("AudioGraphEngine is closed")

    # -- node factories ------------------------------------------------------

    def create_gain(self) -> GainNode:
        self._check_open()
        return GainNode(self, self.channels)

    def create_biquad_filter(self) -> BiquadFilterNode:
        self._check_open()
        return BiquadFilterNode(self, self.channels)

    def create_analyser(self, fft_size: int = 2048) -> AnalyserNode:
        self._check_open()
        node = AnalyserNode(self, fft_size=fft_size, channels=self.channels)
        with self.lock:
            self._taps.append(node)
        return node

    def create_buffer_source(self, buffer: Optional[AudioBuffer] = None) -> AudioBufferSourceNode:
        self._check_open()
        return AudioBufferSourceNode(self, buffer=buffer, channels=self.channels)

    def create_delay(self, max_delay_time: float = 1.0) -> DelayNode:
        self._check_open()
        return DelayNode(self, max_delay_time=max_delay_time, channels=self.channels)

    def create_convolver(self) -> ConvolverNode:
        self._check_open()
        return ConvolverNode(self, self.channels)

    def create_buffer(self, samples, sample_rate: Optional[int] = None) -> AudioBuffer:
        return AudioBuffer(samples, sample_rate or self.sample_rate)

    # -- sources -------------------------------------------------------------

    @property
    def active_sources(self):
        with self.lock:
            return tuple(self._active_sources)

    def _register_source(self, source: AudioBufferSourceNode) -> None:
        if source not in self._active_sources:
            self._active_sources.append(source)
            self._stats["sources_started"] += 1

    def _source_finished(self, source: AudioBufferSourceNode) -> None:
        if source in self._active_sources:
            self._active_sources.remove(source)
        self._stats["sources_ended"] += 1
        self._ended.append(source)

    def flush_ended(self) -> None:
        """Deliver queued onended callbacks outside the engine lock"""
        with self.lock:
            ended, self._ended = self._ended, []
        for source in ended:
            if source.onended is None:
                continue
            if self._dispatcher is not None:
                self._dispatcher(self._invoke_ended, source)
            else:
                self._invoke_ended(source)

    def _invoke_ended(self, source: AudioBufferSourceNode) -> None:
        try:
            source.onended(source)
        except Exception as e:
            self._stats["callback_errors"] += 1
            logger.error(f"AudioGraphEngine: error in onended callback: {e}")

    # -- rendering -----------------------------------------------------------

    def render(self, frames: int) -> np.ndarray:
        """
        Render `frames` frames of the destination mix, shape (channels, frames).
        A suspended engine renders silence and holds the clock.
        """
        out = np.zeros((self.channels, frames), dtype=np.float32)
        with self.lock:
            self._check_open()
            if self._state is EngineState.RUNNING:
                for offset in range(0, frames, self.block_size):
                    count = min(self.block_size, frames - offset)
                    out[:, offset:offset + count] = self._render_quantum(count)
        self.flush_ended()
        return out

    def render_seconds(self, seconds: float) -> np.ndarray:
        return self.render(int(round(seconds * self.sample_rate)))

    def _render_quantum(self, frames: int) -> np.ndarray:
        quantum = RenderQuantum(self._block_index, self.clock.total_frames, frames, self.sample_rate)
        mixed = self.destination.pull(quantum)
        for tap in list(self._taps):
            tap.pull(quantum)
        # Disconnected sources still run so they finish and report onended
        for source in list(self._active_sources):
            source.pull(quantum)
        self._block_index += 1
        self._stats["blocks_rendered"] += 1
        self.clock.update_frame_count(frames)
        return mixed

    # -- real-time output ----------------------------------------------------

    def start(self, output_device=None) -> None:
        """Open the sounddevice output stream fed by a producer thread"""
        import sounddevice as sd

        with self.lock:
            self._check_open()
            if self._stream is not None:
                raise InvalidStateError("Output stream already started")

        capacity = max(int(self.ring_buffer_seconds * self.sample_rate), 2 * self.block_size)
        self._ring = OutputRingBuffer(capacity, channels=self.channels)
        self._producer_stop_event.clear()
        self._producer_thread = threading.Thread(target=self._producer_loop, name="deckmix-render", daemon=True)
        self._producer_thread.start()
        self._wait_for_ring_buffer_ready()

        self._stream = sd.OutputStream(
            samplerate=self.sample_rate,
            channels=self.channels,
            blocksize=self.block_size,
            dtype="float32",
            device=output_device,
            callback=self._sd_callback,
        )
        self._stream.start()
        logger.info(f"AudioGraphEngine: output stream started (device={output_device}, "
                    f"ring {capacity} frames)")

    def stop(self) -> None:
        """Stop the output stream and producer; the graph itself is untouched"""
        self._producer_stop_event.set()
        if self._producer_thread is not None:
            self._producer_thread.join(timeout=2.0)
            if self._producer_thread.is_alive():
                logger.warning("AudioGraphEngine: producer thread did not stop cleanly")
            self._producer_thread = None
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
            logger.info("AudioGraphEngine: output stream stopped")

    def _wait_for_ring_buffer_ready(self, timeout: float = 0.5) -> None:
        deadline = time.monotonic() + timeout
        target = min(self._ring.capacity, 2 * self.block_size)
        while self._ring.available_read() < target and time.monotonic() < deadline:
            time.sleep(0.001)

    def _producer_loop(self) -> None:
        logger.debug("AudioGraphEngine: producer loop started")
        while not self._producer_stop_event.is_set():
            try:
                if self._ring.available_write() < self.block_size:
                    time.sleep(0.002)
                    continue
                block = self.render(self.block_size)
                np.nan_to_num(block, copy=False)
                self._ring.write(np.ascontiguousarray(block.T))
            except Exception as e:
                self._stats["producer_errors"] += 1
                logger.error(f"AudioGraphEngine: producer error: {e}")
                time.sleep(0.01)
        logger.debug("AudioGraphEngine: producer loop stopped")

    def _sd_callback(self, outdata, frames, time_info, status):
        if status and status.output_underflow:
            logger.debug("AudioGraphEngine: output underflow")
        self._ring.read_into(outdata)

    def get_stats(self) -> Dict[str, Any]:
        with self.lock:
            stats = dict(self._stats)
            stats["state"] = self._state.value
            stats["current_time"] = self.clock.now
            stats["active_sources"] = len(self._active_sources)
        if self._ring is not None:
            stats["ring_buffer"] = self._ring.get_stats()
        return stats
