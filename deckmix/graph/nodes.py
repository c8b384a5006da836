#!/usr/bin/env python3
"""
Audio graph nodes.

Every node renders one block at a time into a (channels, frames) float32
array. Rendering is pull based: the engine asks the destination (and every
analyser tap) for a block, and each node pulls and sums its inputs. Blocks
are cached per render quantum so fan-out and feedback loops are evaluated
once. A cycle is only allowed through a DelayNode, which serves its output
from history before reading its inputs.
"""

import math
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional
import logging

import numpy as np
from scipy import signal

from ..errors import InvalidStateError
from .buffer import AudioBuffer
from .params import AudioParam

logger = logging.getLogger(__name__)

# Filter coefficients are refreshed once per render quantum (k-rate)
FILTER_QUANTUM_FRAMES = 128

FILTER_TYPES = ("lowpass", "highpass", "bandpass", "lowshelf", "highshelf",
                "peaking", "notch", "allpass")


@dataclass(frozen=True)
class RenderQuantum:
    """Identifies the block currently being rendered"""
    block_index: int
    start_frame: int
    frames: int
    sample_rate: int

    @property
    def start_time(self) -> float:
        return self.start_frame / self.sample_rate


def match_channels(block: np.ndarray, channels: int) -> np.ndarray:
    """Up/down-mix a (channels, frames) block to the requested channel count"""
    current = block.shape[0]
    if current == channels:
        return block
    if channels == 1:
        return block.mean(axis=0, keepdims=True)
    if current == 1:
        return np.repeat(block, channels, axis=0)
    if current > channels:
        return block[:channels]
    padded = np.zeros((channels, block.shape[1]), dtype=block.dtype)
    padded[:current] = block
    return padded


class AudioNode:
    """Base node: sums its inputs and passes them through"""

    number_of_inputs = 1

    def __init__(self, engine, channels: int = 2):
        self.engine = engine
        self.channel_count = channels
        self._inputs: List["AudioNode"] = []
        self._outputs: List["AudioNode"] = []
        self._cache_block = -1
        self._cache: Optional[np.ndarray] = None
        self._rendering = False

    @property
    def inputs(self):
        return tuple(self._inputs)

    @property
    def outputs(self):
        return tuple(self._outputs)

    def connect(self, destination: "AudioNode") -> "AudioNode":
        if destination.number_of_inputs == 0:
            raise ValueError(f"{type(destination).__name__} accepts no inputs")
        with self.engine.lock:
            if self not in destination._inputs:
                destination._inputs.append(self)
            if destination not in self._outputs:
                self._outputs.append(destination)
        return destination

    def disconnect(self, destination: Optional["AudioNode"] = None) -> None:
        with self.engine.lock:
            targets = [destination] if destination is not None else list(self._outputs)
            for target in targets:
                if self in target._inputs:
                    target._inputs.remove(self)
                if target in self._outputs:
                    self._outputs.remove(target)

    def pull(self, quantum: RenderQuantum) -> np.ndarray:
        if self._cache_block == quantum.block_index:
            return self._cache
        if self._rendering:
            # Cycle without a delay line: contributes silence
            return self._silence(quantum)
        self._rendering = True
        try:
            out = self.process(quantum)
        finally:
            self._rendering = False
        self._store(quantum, out)
        return out

    def process(self, quantum: RenderQuantum) -> np.ndarray:
        return self._mix_inputs(quantum)

    def _mix_inputs(self, quantum: RenderQuantum) -> np.ndarray:
        mixed = self._silence(quantum)
        for node in list(self._inputs):
            mixed += match_channels(node.pull(quantum), self.channel_count)
        return mixed

    def _silence(self, quantum: RenderQuantum) -> np.ndarray:
        return np.zeros((self.channel_count, quantum.frames), dtype=np.float32)

    def _store(self, quantum: RenderQuantum, out: np.ndarray) -> None:
        self._cache_block = quantum.block_index
        self._cache = out


class AudioDestinationNode(AudioNode):
    """Final summing point read by the output stream"""


class GainNode(AudioNode):
    """Multiplies its input by an a-rate gain parameter"""

    def __init__(self, engine, channels: int = 2):
        super().__init__(engine, channels)
        self.gain = AudioParam("gain", 1.0, engine.clock, engine.lock)

    def process(self, quantum: RenderQuantum) -> np.ndarray:
        x = self._mix_inputs(quantum)
        gains = self.gain.values_for_block(quantum.start_time, quantum.frames, quantum.sample_rate)
        return x * gains[np.newaxis, :]


class BiquadFilterNode(AudioNode):
    """
    Second-order IIR filter using the RBJ cookbook formulas.

    Frequency, Q and gain are sampled once per 128-frame quantum. Q is a plain
    linear quality factor for every filter type. Filter state is carried
    across blocks per channel.
    """

    def __init__(self, engine, channels: int = 2):
        super().__init__(engine, channels)
        nyquist = engine.sample_rate / 2.0
        self._type = "lowpass"
        self.frequency = AudioParam("frequency", 350.0, engine.clock, engine.lock,
                                    min_value=0.0, max_value=nyquist)
        self.Q = AudioParam("Q", 1.0, engine.clock, engine.lock, min_value=1e-4)
        self.gain = AudioParam("gain", 0.0, engine.clock, engine.lock)
        self._zi = np.zeros((channels, 2), dtype=np.float64)

    @property
    def type(self) -> str:
        return self._type

    @type.setter
    def type(self, value: str) -> None:
        if value not in FILTER_TYPES:
            raise ValueError(f"Unknown filter type '{value}'. Supported: {', '.join(FILTER_TYPES)}")
        with self.engine.lock:
            self._type = value

    def coefficients(self, frequency: float, q: float, gain_db: float):
        """Normalised (b, a) for the current type at the given settings"""
        return design_biquad(self._type, frequency, q, gain_db, self.engine.sample_rate)

    def process(self, quantum: RenderQuantum) -> np.ndarray:
        x = self._mix_inputs(quantum).astype(np.float64)
        y = np.empty_like(x)
        sr = quantum.sample_rate

        for offset in range(0, quantum.frames, FILTER_QUANTUM_FRAMES):
            end = min(offset + FILTER_QUANTUM_FRAMES, quantum.frames)
            when = quantum.start_time + offset / sr
            b, a = self.coefficients(self.frequency.value_at(when), self.Q.value_at(when),
                                     self.gain.value_at(when))
            if np.allclose(b, a):
                y[:, offset:end] = x[:, offset:end]
                self._zi.fill(0.0)
                continue
            for ch in range(self.channel_count):
                y[ch, offset:end], self._zi[ch] = signal.lfilter(b, a, x[ch, offset:end], zi=self._zi[ch])

        return y.astype(np.float32)


def design_biquad(filter_type: str, frequency: float, q: float, gain_db: float, sample_rate: int):
    """RBJ audio EQ cookbook biquad design, normalised so a[0] == 1"""
    nyquist = sample_rate / 2.0
    f = min(max(frequency, 0.0), nyquist)
    w0 = 2.0 * math.pi * f / sample_rate
    cos_w = math.cos(w0)
    sin_w = math.sin(w0)
    q = max(q, 1e-4)
    alpha = sin_w / (2.0 * q)
    big_a = 10.0 ** (gain_db / 40.0)

    if filter_type == "lowpass":
        b = [(1 - cos_w) / 2, 1 - cos_w, (1 - cos_w) / 2]
        a = [1 + alpha, -2 * cos_w, 1 - alpha]
    elif filter_type == "highpass":
        b = [(1 + cos_w) / 2, -(1 + cos_w), (1 + cos_w) / 2]
        a = [1 + alpha, -2 * cos_w, 1 - alpha]
    elif filter_type == "bandpass":
        b = [alpha, 0.0, -alpha]
        a = [1 + alpha, -2 * cos_w, 1 - alpha]
    elif filter_type == "notch":
        b = [1.0, -2 * cos_w, 1.0]
        a = [1 + alpha, -2 * cos_w, 1 - alpha]
    elif filter_type == "allpass":
        b = [1 - alpha, -2 * cos_w, 1 + alpha]
        a = [1 + alpha, -2 * cos_w, 1 - alpha]
    elif filter_type == "peaking":
        b = [1 + alpha * big_a, -2 * cos_w, 1 - alpha * big_a]
        a = [1 + alpha / big_a, -2 * cos_w, 1 - alpha / big_a]
    elif filter_type in ("lowshelf", "highshelf"):
        # Shelf slope S = 1
        shelf_alpha = sin_w / 2.0 * math.sqrt(2.0)
        root = 2.0 * math.sqrt(big_a) * shelf_alpha
        if filter_type == "lowshelf":
            b = [big_a * ((big_a + 1) - (big_a - 1) * cos_w + root),
                 2 * big_a * ((big_a - 1) - (big_a + 1) * cos_w),
                 big_a * ((big_a + 1) - (big_a - 1) * cos_w - root)]
            a = [(big_a + 1) + (big_a - 1) * cos_w + root,
                 -2 * ((big_a - 1) + (big_a + 1) * cos_w),
                 (big_a + 1) + (big_a - 1) * cos_w - root]
        else:
            b = [big_a * ((big_a + 1) + (big_a - 1) * cos_w + root),
                 -2 * big_a * ((big_a - 1) + (big_a + 1) * cos_w),
                 big_a * ((big_a + 1) + (big_a - 1) * cos_w - root)]
            a = [(big_a + 1) - (big_a - 1) * cos_w + root,
                 2 * ((big_a - 1) - (big_a + 1) * cos_w),
                 (big_a + 1) - (big_a - 1) * cos_w - root]
    else:
        raise ValueError(f"Unknown filter type '{filter_type}'")

    b = np.asarray(b, dtype=np.float64)
    a = np.asarray(a, dtype=np.float64)
    return b / a[0], a / a[0]


class AnalyserNode(AudioNode):
    """
    Spectrum tap. Passes audio through unchanged and keeps the most recent
    fft_size frames (mono mix) for pull-based frequency snapshots.
    """

    def __init__(self, engine, fft_size: int = 2048, channels: int = 2):
        super().__init__(engine, channels)
        if fft_size < 32 or fft_size > 32768 or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two in [32, 32768], got {fft_size}")
        self.fft_size = fft_size
        self.smoothing_time_constant = 0.8
        self.min_decibels = -100.0
        self.max_decibels = -30.0
        self._time_data = np.zeros(fft_size, dtype=np.float32)
        self._smoothed = np.zeros(fft_size // 2, dtype=np.float64)
        self._snapshot_lock = threading.Lock()

    @property
    def frequency_bin_count(self) -> int:
        return self.fft_size // 2

    def process(self, quantum: RenderQuantum) -> np.ndarray:
        x = self._mix_inputs(quantum)
        mono = x.mean(axis=0)
        with self._snapshot_lock:
            n = min(len(mono), self.fft_size)
            self._time_data = np.roll(self._time_data, -n)
            self._time_data[-n:] = mono[-n:]
        return x

    def get_float_frequency_data(self) -> np.ndarray:
        """Smoothed magnitude spectrum in decibels"""
        with self._snapshot_lock:
            frame = self._time_data.astype(np.float64)
            window = np.blackman(self.fft_size)
            magnitude = np.abs(np.fft.rfft(frame * window))[:self.frequency_bin_count] / self.fft_size
            tau = self.smoothing_time_constant
            self._smoothed = tau * self._smoothed + (1.0 - tau) * magnitude
            smoothed = self._smoothed.copy()
        with np.errstate(divide="ignore"):
            return 20.0 * np.log10(smoothed)

    def get_byte_frequency_data(self) -> np.ndarray:
        """Spectrum scaled between min_decibels and max_decibels into 0..255"""
        db = self.get_float_frequency_data()
        span = self.max_decibels - self.min_decibels
        scaled = 255.0 * (db - self.min_decibels) / span
        return np.clip(np.nan_to_num(scaled, neginf=0.0), 0, 255).astype(np.uint8)

    def get_byte_time_domain_data(self) -> np.ndarray:
        with self._snapshot_lock:
            data = self._time_data.copy()
        return np.clip(128.0 * (1.0 + data), 0, 255).astype(np.uint8)


class AudioBufferSourceNode(AudioNode):
    """
    One-shot player for an AudioBuffer.

    A source can be started once. stop() before start() raises
    InvalidStateError. `onended` fires once, for a natural end as well as for
    an explicit stop, and is delivered through the engine's event dispatcher.
    """

    number_of_inputs = 0

    UNSCHEDULED = "unscheduled"
    SCHEDULED = "scheduled"
    FINISHED = "finished"

    def __init__(self, engine, buffer: Optional[AudioBuffer] = None, channels: int = 2):
        super().__init__(engine, channels)
        self.buffer = buffer
        self.onended: Optional[Callable[["AudioBufferSourceNode"], None]] = None
        self._status = self.UNSCHEDULED
        self._start_frame: Optional[int] = None
        self._stop_frame: Optional[int] = None
        self._position = 0.0

    @property
    def playback_state(self) -> str:
        return self._status

    @property
    def playing(self) -> bool:
        return self._status == self.SCHEDULED

    def start(self, when: float = 0.0, offset: float = 0.0) -> None:
        with self.engine.lock:
            if self._status != self.UNSCHEDULED:
                raise InvalidStateError("AudioBufferSourceNode can only be started once")
            if self.buffer is None:
                raise InvalidStateError("AudioBufferSourceNode has no buffer")
            self._start_frame = int(round(max(when, 0.0) * self.engine.sample_rate))
            self._position = max(offset, 0.0) * self.buffer.sample_rate
            self._status = self.SCHEDULED
            self.engine._register_source(self)

    def stop(self, when: float = 0.0) -> None:
        with self.engine.lock:
            if self._status == self.UNSCHEDULED:
                raise InvalidStateError("AudioBufferSourceNode stopped before it was started")
            if self._status == self.FINISHED:
                return
            self._stop_frame = int(round(max(when, 0.0) * self.engine.sample_rate))
            immediate = self._stop_frame <= self.engine.clock.total_frames
            if immediate:
                self._finish()
        if immediate:
            self.engine.flush_ended()

    def process(self, quantum: RenderQuantum) -> np.ndarray:
        out = self._silence(quantum)
        if self._status != self.SCHEDULED:
            return out

        block_start = quantum.start_frame
        block_end = block_start + quantum.frames
        begin = max(block_start, self._start_frame)
        end = block_end
        if self._stop_frame is not None:
            end = min(end, max(self._stop_frame, block_start))

        if begin < end:
            written = self._render_into(out, begin - block_start, end - begin)
            if written < end - begin:
                self._finish()
                return out

        if self._stop_frame is not None and self._stop_frame <= block_end:
            self._finish()
        return out

    def _render_into(self, out: np.ndarray, offset: int, count: int) -> int:
        data = self.buffer.samples
        length = self.buffer.length
        step = self.buffer.sample_rate / self.engine.sample_rate

        if step == 1.0:
            pos = int(self._position)
            available = max(0, min(count, length - pos))
            chunk = data[:, pos:pos + available]
        else:
            positions = self._position + step * np.arange(count)
            available = int(np.count_nonzero(positions <= length - 1))
            positions = positions[:available]
            chunk = np.vstack([np.interp(positions, np.arange(length), data[ch])
                               for ch in range(data.shape[0])]) if available else data[:, :0]

        if available:
            out[:, offset:offset + available] = match_channels(chunk.astype(np.float32), self.channel_count)
        self._position += step * available
        return available

    def _finish(self) -> None:
        if self._status == self.FINISHED:
            return
        self._status = self.FINISHED
        self.engine._source_finished(self)


class DelayNode(AudioNode):
    """
    Delay line with a k-rate delay_time parameter.

    When the delay is at least one block long the output is served from
    history before the inputs are pulled, which is what lets a DelayNode sit
    inside a feedback loop.
    """

    def __init__(self, engine, max_delay_time: float = 1.0, channels: int = 2):
        super().__init__(engine, channels)
        if max_delay_time <= 0:
            raise ValueError(f"max_delay_time must be positive, got {max_delay_time}")
        self.max_delay_time = max_delay_time
        self.delay_time = AudioParam("delayTime", 0.0, engine.clock, engine.lock,
                                     min_value=0.0, max_value=max_delay_time)
        self._capacity = int(math.ceil(max_delay_time * engine.sample_rate)) + engine.block_size + 1
        self._history = np.zeros((channels, self._capacity), dtype=np.float32)
        self._written = 0

    def pull(self, quantum: RenderQuantum) -> np.ndarray:
        if self._cache_block == quantum.block_index:
            return self._cache
        if self._rendering:
            return self._silence(quantum)

        delay_frames = int(round(self.delay_time.value_at(quantum.start_time) * quantum.sample_rate))
        base = self._written
        self._rendering = True
        try:
            if delay_frames >= quantum.frames:
                out = self._read(base, delay_frames, quantum.frames)
                self._store(quantum, out)
                self._write(base, self._mix_inputs(quantum))
            else:
                self._write(base, self._mix_inputs(quantum))
                out = self._read(base, delay_frames, quantum.frames)
                self._store(quantum, out)
        finally:
            self._rendering = False
        return out

    def _read(self, base: int, delay_frames: int, frames: int) -> np.ndarray:
        idx = (base + np.arange(frames) - delay_frames) % self._capacity
        return self._history[:, idx].copy()

    def _write(self, base: int, block: np.ndarray) -> None:
        idx = (base + np.arange(block.shape[1])) % self._capacity
        self._history[:, idx] = block
        self._written = base + block.shape[1]


class ConvolverNode(AudioNode):
    """Streaming convolution (overlap-add) against an impulse response buffer"""

    # Loudness normalisation constants used by browser audio engines
    GAIN_CALIBRATION = 0.00125
    GAIN_CALIBRATION_SAMPLE_RATE = 44100.0
    MIN_POWER = 0.000125

    def __init__(self, engine, channels: int = 2):
        super().__init__(engine, channels)
        self.normalize = True
        self._buffer: Optional[AudioBuffer] = None
        self._kernel: Optional[np.ndarray] = None
        self._tail: Optional[np.ndarray] = None

    @property
    def buffer(self) -> Optional[AudioBuffer]:
        return self._buffer

    @buffer.setter
    def buffer(self, impulse: Optional[AudioBuffer]) -> None:
        with self.engine.lock:
            if impulse is None:
                self._buffer = self._kernel = self._tail = None
                return
            if impulse.number_of_channels not in (1, 2):
                raise ValueError(f"Impulse response must have 1 or 2 channels, got {impulse.number_of_channels}")
            kernel = impulse.samples.astype(np.float64)
            if self.normalize:
                kernel = kernel * self._normalization_scale(impulse)
            self._buffer = impulse
            self._kernel = match_channels(kernel, self.channel_count)
            self._tail = np.zeros((self.channel_count, max(kernel.shape[1] - 1, 0)), dtype=np.float64)

    def _normalization_scale(self, impulse: AudioBuffer) -> float:
        data = impulse.samples.astype(np.float64)
        power = math.sqrt(float(np.sum(data * data)) / (impulse.number_of_channels * impulse.length))
        scale = 1.0 / max(power, self.MIN_POWER)
        scale *= self.GAIN_CALIBRATION
        scale *= self.GAIN_CALIBRATION_SAMPLE_RATE / impulse.sample_rate
        return scale

    def process(self, quantum: RenderQuantum) -> np.ndarray:
        x = self._mix_inputs(quantum).astype(np.float64)
        if self._kernel is None:
            return self._silence(quantum)

        frames = quantum.frames
        tail_len = self._tail.shape[1]
        out = np.empty((self.channel_count, frames), dtype=np.float64)
        new_tail = np.empty_like(self._tail)
        for ch in range(self.channel_count):
            y = signal.oaconvolve(x[ch], self._kernel[ch])
            y[:tail_len] += self._tail[ch]
            out[ch] = y[:frames]
            new_tail[ch] = y[frames:frames + tail_len]
        self._tail = new_tail
        return out.astype(np.float32)
