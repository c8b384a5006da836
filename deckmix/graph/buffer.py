"""Decoded sample buffers shared between the catalog and the decks."""

import numpy as np


class AudioBuffer:
    """
    Immutable block of decoded audio.

    Samples are stored as float32 with shape (channels, length). The array is
    flagged read-only so a buffer can be referenced by several decks and the
    catalog at once.
    """

    def __init__(self, samples, sample_rate: int):
        data = np.asarray(samples, dtype=np.float32)
        if data.ndim == 1:
            data = data.reshape(1, -1)
        elif data.ndim != 2:
            raise ValueError(f"Unsupported sample shape: {data.shape}")
        if sample_rate <= 0:
            raise ValueError(f"Sample rate must be positive: {sample_rate}")

        self._data = np.array(data, dtype=np.float32, copy=True)
        self._data.setflags(write=False)
        self.sample_rate = int(sample_rate)

    @classmethod
    def silent(cls, channels: int, length: int, sample_rate: int) -> "AudioBuffer":
        return cls(np.zeros((channels, length), dtype=np.float32), sample_rate)

    @property
    def number_of_channels(self) -> int:
        return self._data.shape[0]

    @property
    def length(self) -> int:
        return self._data.shape[1]

    @property
    def duration(self) -> float:
        return self.length / self.sample_rate

    @property
    def samples(self) -> np.ndarray:
        """Read-only (channels, length) view of the sample data"""
        return self._data

    def get_channel_data(self, channel: int) -> np.ndarray:
        return self._data[channel]

    def __repr__(self):
        return (f"AudioBuffer(channels={self.number_of_channels}, length={self.length}, "
                f"sample_rate={self.sample_rate})")
