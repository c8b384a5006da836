#!/usr/bin/env python3
"""
Notifications emitted by the console core to its observers (UI, CLI).
All events are immutable; observers receive them on the control thread.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PlaybackReason(Enum):
    """Why a deck's playing flag changed"""
    PLAY = "play"
    STOP = "stop"
    NATURAL_END = "natural_end"


@dataclass(frozen=True)
class ConsoleEvent:
    """Base class for console notifications"""


@dataclass(frozen=True)
class TrackAdded(ConsoleEvent):
    index: int
    title: str


@dataclass(frozen=True)
class DeckTitleChanged(ConsoleEvent):
    deck_id: str
    title: str


@dataclass(frozen=True)
class DeckPlaybackChanged(ConsoleEvent):
    deck_id: str
    playing: bool
    reason: PlaybackReason


@dataclass(frozen=True)
class TransitionStarted(ConsoleEvent):
    source_id: str
    destination_id: str
    title: str
    start_time: float
    end_time: float


@dataclass(frozen=True)
class DeferredStopRaced(ConsoleEvent):
    """A transition's deferred stop fired after its deck was reloaded or restarted"""
    deck_id: str
    armed_epoch: int
    current_epoch: int
    skipped: bool


@dataclass(frozen=True)
class AcquisitionFailed(ConsoleEvent):
    source: str
    reason: str


@dataclass(frozen=True)
class DirectorStateChanged(ConsoleEvent):
    enabled: bool
    detail: Optional[str] = None
