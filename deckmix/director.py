#!/usr/bin/env python3
"""
Autonomous transition director.

While enabled the director scans the decks once per second. When a deck is
playing it rolls a fixed per-tick probability and, on a hit, crossfades into
the next channel with a random catalog track. The roll stands in for real
track-end detection; it does not look at elapsed time or duration.
"""

import random
import threading
from typing import Dict, Optional, Tuple
import logging

from .events import DeferredStopRaced, DirectorStateChanged, TransitionStarted
from .models import DirectorState, Transition

logger = logging.getLogger(__name__)


class TransitionDirector:
    def __init__(self, session, scheduler, engine, rng=None):
        self.session = session
        self.scheduler = scheduler
        self.engine = engine
        self.config = session.config
        self.rng = rng if rng is not None else random.Random()

        self.state = DirectorState.OFF
        self.last_transition: Optional[Transition] = None
        self._scan_handle = None
        # (deck_id, epoch) -> scheduled stop handle
        self._pending_stops: Dict[Tuple[str, int], object] = {}
        self._lock = threading.RLock()
        self._stats = {
            "scans": 0,
            "transitions": 0,
            "aborted": 0,
            "stale_stops": 0,
        }

        session.director = self

    # -- lifecycle -----------------------------------------------------------

    def successor(self, deck_id: str) -> str:
        """Fixed cyclic successor over the channel ids (A -> B -> C -> D -> A)"""
        channels = tuple(self.config.CHANNEL_IDS)
        return channels[(channels.index(deck_id) + 1) % len(channels)]

    def enable(self) -> None:
        with self._lock:
            if self.state is DirectorState.SCANNING:
                logger.debug("Director: already scanning")
                return
            self.session.director_enabled = True
            self._scan_handle = self.scheduler.call_every(self.config.SCAN_INTERVAL_SECONDS, self.scan,
                                                          name="director-scan")
            self.state = DirectorState.SCANNING
        logger.info("Director: online")
        self.session.emit(DirectorStateChanged(True, "scanning"))
        self._avoid_silence()

    def disable(self) -> None:
        """Stop scanning. Crossfades already armed still finish."""
        with self._lock:
            if self.state is DirectorState.OFF:
                return
            self.session.director_enabled = False
            if self._scan_handle is not None:
                self._scan_handle.cancel()
                self._scan_handle = None
            self.state = DirectorState.OFF
        logger.info("Director: offline")
        self.session.emit(DirectorStateChanged(False, "off"))

    @property
    def enabled(self) -> bool:
        return self.state is DirectorState.SCANNING

    def _avoid_silence(self) -> None:
        catalog = self.session.catalog
        if self.session.any_playing() or len(catalog) == 0:
            return
        deck = self.session.deck(self.config.DEFAULT_DECK_ID)
        logger.info(f"Director: nothing playing, starting '{catalog[0].title}' on deck {deck.deck_id}")
        deck.load(catalog[0])
        # An earlier crossfade may have left this deck faded out
        now = self.engine.current_time
        gain = deck.gain.gain
        gain.compact(now)
        gain.cancel_scheduled_values(now)
        gain.set_value_at_time(1.0, now)
        deck.play()

    # -- scanning ------------------------------------------------------------

    def scan(self) -> Optional[Transition]:
        self._stats["scans"] += 1
        playing = self.session.playing_decks()
        if not playing:
            return None
        lead = playing[0]
        if self.rng.random() < self.config.TRANSITION_PROBABILITY:
            return self.trigger_transition(lead.deck_id)
        return None

    def notify_end(self, deck_id: str) -> Optional[Transition]:
        """A deck ran out of audio; scan immediately instead of waiting for the tick"""
        logger.debug(f"Director: deck {deck_id} ended, rescanning")
        return self.scan()

    # -- transitions ---------------------------------------------------------

    def trigger_transition(self, current_id: str) -> Optional[Transition]:
        destination_id = self.successor(current_id)
        track = self.session.catalog.pick(self.rng)
        if track is None:
            self._stats["aborted"] += 1
            logger.debug(f"Director: transition from {current_id} aborted, catalog is empty")
            return None

        source = self.session.deck(current_id)
        destination = self.session.deck(destination_id)
        crossfade = self.config.CROSSFADE_SECONDS
        logger.info(f"Director: mixing {current_id} -> {destination_id} with '{track.title}'")

        destination.load(track)
        now = self.engine.current_time
        incoming = destination.gain.gain
        incoming.compact(now)
        incoming.cancel_scheduled_values(now)
        incoming.set_value_at_time(0.0, now)
        destination.play()

        end = now + crossfade
        incoming.linear_ramp_to_value_at_time(1.0, end)

        outgoing = source.gain.gain
        level = outgoing.value_at(now)
        outgoing.compact(now)
        outgoing.cancel_scheduled_values(now)
        outgoing.set_value_at_time(level, now)
        outgoing.linear_ramp_to_value_at_time(0.0, end)

        source.toggle_effect(self.config.TRANSITION_EFFECT_KIND)

        armed_epoch = source.epoch
        handle = self.scheduler.call_later(crossfade, self._deferred_stop, current_id, armed_epoch,
                                           name=f"deferred-stop-{current_id}")
        with self._lock:
            self._pending_stops[(current_id, armed_epoch)] = handle

        transition = Transition(current_id, destination_id, track, now, end, armed_epoch, handle)
        self.last_transition = transition
        self._stats["transitions"] += 1
        self.session.emit(TransitionStarted(current_id, destination_id, track.title, now, end))
        return transition

    def _deferred_stop(self, deck_id: str, armed_epoch: int) -> bool:
        with self._lock:
            self._pending_stops.pop((deck_id, armed_epoch), None)
        deck = self.session.deck(deck_id)
        if deck.epoch != armed_epoch:
            skip = self.config.GUARD_STALE_DEFERRED_STOP
            self._stats["stale_stops"] += 1
            logger.warning(f"Director: deferred stop for deck {deck_id} raced a reload/restart "
                           f"(epoch {armed_epoch} -> {deck.epoch}); {'skipping' if skip else 'stopping anyway'}")
            self.session.emit(DeferredStopRaced(deck_id, armed_epoch, deck.epoch, skip))
            if skip:
                return False
        deck.stop()
        return True

    def pending_deferred_stops(self) -> Dict[Tuple[str, int], object]:
        with self._lock:
            return {key: handle for key, handle in self._pending_stops.items() if not handle.cancelled}

    def get_stats(self):
        with self._lock:
            stats = dict(self._stats)
            stats["state"] = self.state.name
            stats["pending_stops"] = len(self._pending_stops)
        return stats
