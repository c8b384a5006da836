"""Value types shared by the decks, the director and the catalog."""

import threading
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Iterator, List, Optional

from .graph.buffer import AudioBuffer


@dataclass(frozen=True)
class Track:
    """A decoded track. Decks and the catalog share the same instance."""
    title: str
    buffer: AudioBuffer
    duration: Optional[float] = None

    def __post_init__(self):
        if self.duration is None:
            object.__setattr__(self, "duration", self.buffer.duration)


class Catalog:
    """Ordered, append-only track list"""

    def __init__(self, tracks=None):
        self._tracks: List[Track] = list(tracks or [])
        self._lock = threading.Lock()

    def append(self, track: Track) -> int:
        """Append a track and return its index"""
        with self._lock:
            self._tracks.append(track)
            return len(self._tracks) - 1

    def pick(self, rng) -> Optional[Track]:
        """Uniformly random track, or None when the catalog is empty"""
        with self._lock:
            if not self._tracks:
                return None
            index = int(rng.random() * len(self._tracks))
            return self._tracks[min(index, len(self._tracks) - 1)]

    def snapshot(self) -> List[Track]:
        with self._lock:
            return list(self._tracks)

    def __getitem__(self, index: int) -> Track:
        with self._lock:
            return self._tracks[index]

    def __len__(self) -> int:
        with self._lock:
            return len(self._tracks)

    def __iter__(self) -> Iterator[Track]:
        return iter(self.snapshot())

    def __bool__(self) -> bool:
        return len(self) > 0


class DeckState(Enum):
    IDLE = auto()
    LOADED = auto()
    PLAYING = auto()


class DirectorState(Enum):
    OFF = auto()
    SCANNING = auto()


@dataclass
class Transition:
    """Record of one director crossfade"""
    source_id: str
    destination_id: str
    track: Track
    start_time: float
    end_time: float
    source_epoch: int
    stop_handle: object = field(default=None, repr=False)
