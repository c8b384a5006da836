#!/usr/bin/env python3
"""
Shared console context.

The Session replaces ambient globals: it holds the catalog, the director
enabled flag, the deck table, the effect registry and the observer list,
and is handed to every Deck and to the TransitionDirector.
"""

import threading
from typing import Callable, Dict, List, Optional
import logging

from . import config
from .effects import EffectRegistry
from .events import ConsoleEvent
from .models import Catalog, DeckState

logger = logging.getLogger(__name__)


class Session:
    def __init__(self, catalog: Optional[Catalog] = None, effects: Optional[EffectRegistry] = None,
                 app_config_module=config):
        self.config = app_config_module
        self.catalog = catalog if catalog is not None else Catalog()
        self.effects = effects if effects is not None else EffectRegistry()
        self.director_enabled = False
        self.director = None
        self.decks: Dict[str, "Deck"] = {}
        self._observers: List[Callable[[ConsoleEvent], None]] = []
        self._lock = threading.RLock()

    # -- decks ---------------------------------------------------------------

    def add_deck(self, deck) -> None:
        with self._lock:
            if deck.deck_id in self.decks:
                raise ValueError(f"Deck {deck.deck_id} already registered")
            self.decks[deck.deck_id] = deck

    def deck(self, deck_id: str):
        try:
            return self.decks[deck_id]
        except KeyError:
            raise KeyError(f"Unknown deck '{deck_id}'. Channels: {', '.join(self.decks)}") from None

    def playing_decks(self) -> List:
        """Playing decks in channel order"""
        return [deck for deck in self.decks.values() if deck.state is DeckState.PLAYING]

    def any_playing(self) -> bool:
        return bool(self.playing_decks())

    # -- observers -----------------------------------------------------------

    def add_observer(self, callback: Callable[[ConsoleEvent], None]) -> None:
        with self._lock:
            if callback not in self._observers:
                self._observers.append(callback)

    def remove_observer(self, callback: Callable[[ConsoleEvent], None]) -> None:
        with self._lock:
            if callback in self._observers:
                self._observers.remove(callback)

    def emit(self, event: ConsoleEvent) -> None:
        with self._lock:
            observers = list(self._observers)
        for callback in observers:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Session: error in observer for {type(event).__name__}: {e}")
