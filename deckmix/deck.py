# deckmix/deck.py

import threading
from typing import Any, Dict, Optional
import logging

import numpy as np

from .errors import InvalidStateError
from .events import DeckPlaybackChanged, DeckTitleChanged, PlaybackReason
from .graph.engine import EngineState
from .models import DeckState, Track

logger = logging.getLogger(__name__)


class Deck:
    """
    One playback channel.

    Graph: source -> filter -> gain -> destination, with the analyser tapped
    off the gain and an effect bus (dry by default) summed back into the gain.
    A fresh buffer source is built on every play(); at most one is live.
    """

    VALID_TRANSITIONS = {
        DeckState.IDLE: (DeckState.IDLE, DeckState.LOADED),
        DeckState.LOADED: (DeckState.LOADED, DeckState.PLAYING),
        DeckState.PLAYING: (DeckState.LOADED, DeckState.PLAYING),
    }

    def __init__(self, deck_id: str, engine, session):
        self.deck_id = deck_id
        self.engine = engine
        self.session = session
        self.config = session.config
        self.display_color = self.config.get_deck_color(deck_id)

        self.track: Optional[Track] = None
        self.state = DeckState.IDLE
        self.fx_active = False
        self.epoch = 0
        self._source = None
        self._effect_unit = None
        self._lock = threading.RLock()

        now = engine.current_time
        self.filter = engine.create_biquad_filter()
        self.filter.type = "allpass"
        self.filter.frequency.set_value_at_time(0.0, now)
        self.gain = engine.create_gain()
        self.analyser = engine.create_analyser(self.config.ANALYSER_FFT_SIZE)
        self.fx_bus = engine.create_gain()
        self.fx_bus.gain.set_value_at_time(0.0, now)

        self.filter.connect(self.gain)
        self.fx_bus.connect(self.gain)
        self.gain.connect(self.analyser)
        self.gain.connect(engine.destination)

        session.add_deck(self)
        logger.debug(f"Deck {self.deck_id} - Initialized (colour {self.display_color})")

    # -- state ---------------------------------------------------------------

    @property
    def is_playing(self) -> bool:
        return self.state is DeckState.PLAYING

    @property
    def title(self) -> Optional[str]:
        return self.track.title if self.track is not None else None

    @property
    def volume(self) -> float:
        return self.gain.gain.value

    @property
    def source(self):
        """The live buffer source, or None"""
        return self._source

    def _set_state(self, new_state: DeckState) -> None:
        if new_state not in self.VALID_TRANSITIONS[self.state]:
            raise InvalidStateError(f"Deck {self.deck_id}: invalid transition {self.state.name} -> {new_state.name}")
        if new_state is not self.state:
            logger.debug(f"Deck {self.deck_id} - {self.state.name} -> {new_state.name}")
        self.state = new_state

    # -- transport -----------------------------------------------------------

    def load(self, track: Track) -> None:
        with self._lock:
            if self.state is DeckState.PLAYING:
                self.stop()
            self.track = track
            self.epoch += 1
            self._set_state(DeckState.LOADED)
        logger.info(f"Deck {self.deck_id} - Loaded '{track.title}' ({track.duration:.1f}s)")
        self.session.emit(DeckTitleChanged(self.deck_id, track.title))

    def play(self) -> bool:
        with self._lock:
            if self.track is None:
                logger.debug(f"Deck {self.deck_id} - play() ignored, no track loaded")
                return False
            if self.engine.state is EngineState.SUSPENDED:
                self.engine.resume()

            self._teardown_source()
            source = self.engine.create_buffer_source(self.track.buffer)
            source.connect(self.filter)
            source.onended = self._on_source_ended
            source.start(0)
            self._source = source
            self.epoch += 1
            self._set_state(DeckState.PLAYING)
        logger.info(f"Deck {self.deck_id} - Playing '{self.track.title}'")
        self.session.emit(DeckPlaybackChanged(self.deck_id, True, PlaybackReason.PLAY))
        return True

    def stop(self) -> None:
        with self._lock:
            was_playing = self.state is DeckState.PLAYING
            self._teardown_source()
            self.filter.frequency.cancel_scheduled_values(self.engine.current_time)
            if self.track is not None:
                self._set_state(DeckState.LOADED)
        if was_playing:
            logger.info(f"Deck {self.deck_id} - Stopped")
            self.session.emit(DeckPlaybackChanged(self.deck_id, False, PlaybackReason.STOP))

    def toggle_play(self) -> bool:
        """Returns True when the deck ends up playing"""
        if self.is_playing:
            self.stop()
            return False
        return self.play()

    def _teardown_source(self) -> None:
        source, self._source = self._source, None
        if source is None:
            return
        try:
            source.stop()
        except InvalidStateError as e:
            logger.debug(f"Deck {self.deck_id} - Redundant source stop ignored: {e}")
        source.disconnect()

    def _on_source_ended(self, source) -> None:
        with self._lock:
            if source is not self._source or self.state is not DeckState.PLAYING:
                return
            self._source = None
            source.disconnect()
            self._set_state(DeckState.LOADED)
            notify_director = self.session.director_enabled and self.session.director is not None
        logger.info(f"Deck {self.deck_id} - Reached end of '{self.title}'")
        self.session.emit(DeckPlaybackChanged(self.deck_id, False, PlaybackReason.NATURAL_END))
        if notify_director:
            self.session.director.notify_end(self.deck_id)

    # -- mixing --------------------------------------------------------------

    def set_volume(self, level: float) -> None:
        level = min(max(float(level), 0.0), 1.0)
        with self._lock:
            self._glide(self.gain.gain, level)
        logger.debug(f"Deck {self.deck_id} - Volume -> {level:.2f}")

    def toggle_effect(self, kind: str = "filter") -> bool:
        """Flip the effect flag. Every kind currently drives the same filter sweep."""
        with self._lock:
            self.fx_active = not self.fx_active
            behaviour = self.session.effects.resolve(kind)
            now = self.engine.current_time
            self.filter.frequency.compact(now)
            if self.fx_active:
                behaviour.engage(self, now)
            else:
                behaviour.release(self, now)
        logger.info(f"Deck {self.deck_id} - Effect '{kind}' {'on' if self.fx_active else 'off'}")
        return self.fx_active

    def attach_effect(self, unit) -> None:
        """Route filter -> unit -> effect bus, replacing any previous unit"""
        with self._lock:
            if self._effect_unit is not None:
                self.filter.disconnect(self._effect_unit.input)
                self._effect_unit.output.disconnect(self.fx_bus)
            self.filter.connect(unit.input)
            unit.output.connect(self.fx_bus)
            self._effect_unit = unit
        logger.info(f"Deck {self.deck_id} - Attached {type(unit.node).__name__} to effect bus")

    def set_effect_mix(self, level: float) -> None:
        level = min(max(float(level), 0.0), 1.0)
        with self._lock:
            self._glide(self.fx_bus.gain, level)

    def _glide(self, param, level: float) -> None:
        """Approach level from wherever the curve is now, replacing any pending ramp"""
        now = self.engine.current_time
        current = param.value_at(now)
        param.compact(now)
        param.cancel_scheduled_values(now)
        param.set_value_at_time(current, now)
        param.set_target_at_time(level, now, self.config.VOLUME_TIME_CONSTANT)

    # -- visualisation -------------------------------------------------------

    def frequency_snapshot(self) -> Optional[np.ndarray]:
        """Byte spectrum (frequency_bin_count values) while playing, else None"""
        if not self.is_playing:
            return None
        return self.analyser.get_byte_frequency_data()

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'deck_id': self.deck_id,
                'state': self.state.name,
                'title': self.title,
                'volume': round(self.volume, 3),
                'fx_active': self.fx_active,
                'filter': self.filter.type,
                'epoch': self.epoch,
                'color': self.display_color,
            }
