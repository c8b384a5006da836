#!/usr/bin/env python3
"""
Output ring buffer between the render producer and the sounddevice callback.

The producer thread writes rendered blocks; the device callback copies
frames straight into its output array and zero-fills on underrun.
"""

import numpy as np
import threading
import logging

logger = logging.getLogger(__name__)


class OutputRingBuffer:
    """Thread-safe (frames, channels) circular buffer with partial writes"""

    def __init__(self, capacity_frames, channels=2):
        self.channels = channels
        self.capacity = int(capacity_frames)
        if self.capacity <= 0:
            raise ValueError(f"Ring buffer capacity must be positive, got {capacity_frames}")
        self._buf = np.zeros((self.capacity, channels), dtype=np.float32)
        self._write_index = 0
        self._read_index = 0
        self._size = 0
        self._underruns = 0
        self._lock = threading.Lock()

    def write(self, block):
        """
        Write a (frames, channels) block. Returns the number of frames stored;
        the caller keeps whatever did not fit.
        """
        if block.ndim != 2 or block.shape[1] != self.channels:
            raise ValueError(f"Expected (frames, {self.channels}) block, got {block.shape}")

        with self._lock:
            count = min(block.shape[0], self.capacity - self._size)
            if count <= 0:
                return 0
            head = min(count, self.capacity - self._write_index)
            self._buf[self._write_index:self._write_index + head] = block[:head]
            if count > head:
                self._buf[:count - head] = block[head:count]
            self._write_index = (self._write_index + count) % self.capacity
            self._size += count
            return count

    def read_into(self, outdata):
        """Fill a device output array; missing frames become silence"""
        frames = outdata.shape[0]
        with self._lock:
            count = min(frames, self._size)
            head = min(count, self.capacity - self._read_index)
            outdata[:head] = self._buf[self._read_index:self._read_index + head]
            if count > head:
                outdata[head:count] = self._buf[:count - head]
            self._read_index = (self._read_index + count) % self.capacity
            self._size -= count
            if count < frames:
                outdata[count:] = 0.0
                self._underruns += 1
            return count

    def available_write(self):
        with self._lock:
            return self.capacity - self._size

    def available_read(self):
        with self._lock:
            return self._size

    def clear(self):
        with self._lock:
            self._size = 0
            self._read_index = 0
            self._write_index = 0
            self._buf.fill(0.0)

    def get_stats(self):
        """Buffer statistics for status lines"""
        with self._lock:
            return {
                'capacity': self.capacity,
                'size': self._size,
                'underruns': self._underruns,
                'channels': self.channels,
            }
