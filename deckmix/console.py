# deckmix/console.py

from concurrent.futures import Future
from typing import Any, Callable, Dict, Optional
import logging

from . import config as default_config
from .acquisition import TrackLoader
from .deck import Deck
from .director import TransitionDirector
from .errors import AcquisitionFailure
from .events import AcquisitionFailed, TrackAdded
from .graph.engine import AudioGraphEngine
from .models import Track
from .scheduler import ControlScheduler
from .session import Session

logger = logging.getLogger(__name__)


class Console:
    """
    Application root: builds the engine, the control scheduler, the session,
    the four decks, the director and the track loader, and wires them up.

    Methods are meant to run on the control thread. Callers on other threads
    go through submit().
    """

    def __init__(self, app_config_module=default_config, engine: Optional[AudioGraphEngine] = None,
                 scheduler: Optional[ControlScheduler] = None, loader: Optional[TrackLoader] = None,
                 rng=None):
        logger.debug("Console - Initializing...")
        self.app_config = app_config_module
        if self.app_config is None:
            raise ValueError("Console requires a valid config module.")

        self.engine = engine if engine is not None else AudioGraphEngine(
            sample_rate=self.app_config.SAMPLE_RATE,
            block_size=self.app_config.BLOCK_SIZE,
            channels=self.app_config.OUTPUT_CHANNELS,
            ring_buffer_seconds=self.app_config.RING_BUFFER_SECONDS,
        )
        self.scheduler = scheduler if scheduler is not None else ControlScheduler()
        self.engine.set_event_dispatcher(self.scheduler.call_soon)

        self.session = Session(app_config_module=self.app_config)
        self.decks: Dict[str, Deck] = {
            deck_id: Deck(deck_id, self.engine, self.session) for deck_id in self.app_config.CHANNEL_IDS
        }
        self.director = TransitionDirector(self.session, self.scheduler, self.engine, rng=rng)
        self.loader = loader if loader is not None else TrackLoader(
            self.engine.sample_rate,
            downloads_dir=self.app_config.DOWNLOADS_DIR,
            timeout=self.app_config.FETCH_TIMEOUT_SECONDS,
            max_workers=self.app_config.ACQUISITION_WORKERS,
        )
        self.pending_track: Optional[Track] = None

        logger.debug(f"Console - Initialized with decks {', '.join(self.decks)}")

    @property
    def catalog(self):
        return self.session.catalog

    def deck(self, deck_id: str) -> Deck:
        return self.session.deck(deck_id)

    def add_observer(self, callback: Callable) -> None:
        self.session.add_observer(callback)

    def submit(self, fn: Callable, *args):
        """Hand a call to the control thread"""
        return self.scheduler.call_soon(fn, *args)

    # -- catalog -------------------------------------------------------------

    def add_track(self, track: Track) -> int:
        index = self.session.catalog.append(track)
        logger.info(f"Console - Track {index}: '{track.title}' added to catalog")
        self.session.emit(TrackAdded(index, track.title))
        return index

    def import_file(self, path: str, title: Optional[str] = None) -> Future:
        return self._acquire(path, self.loader.submit_file(path, title))

    def import_url(self, url: str, title: Optional[str] = None) -> Future:
        return self._acquire(url, self.loader.submit_url(url, title))

    def import_demo(self) -> Future:
        return self.import_url(self.app_config.DEMO_TRACK_URL, self.app_config.DEMO_TRACK_TITLE)

    def _acquire(self, source: str, decoding: Future) -> Future:
        """
        Returns a Future resolved with the catalog index once the track is
        added (or with the AcquisitionFailure). The append itself happens on
        the control thread.
        """
        added: Future = Future()
        decoding.add_done_callback(lambda done: self.scheduler.call_soon(self._on_acquired, source, done, added))
        return added

    def _on_acquired(self, source: str, decoding: Future, added: Future) -> None:
        try:
            track = decoding.result()
        except AcquisitionFailure as e:
            logger.error(f"Console - {e}")
            self.session.emit(AcquisitionFailed(source, str(e.reason)))
            added.set_exception(e)
            return
        except Exception as e:
            added.set_exception(e)
            raise
        added.set_result(self.add_track(track))

    # -- load selection ------------------------------------------------------

    def prompt_load(self, index: int) -> Track:
        """Select a catalog track to be bound onto a deck"""
        self.pending_track = self.session.catalog[index]
        logger.debug(f"Console - Pending load: '{self.pending_track.title}'")
        return self.pending_track

    def cancel_load(self) -> None:
        self.pending_track = None

    def load_to_deck(self, deck_id: str) -> bool:
        if self.pending_track is None:
            logger.debug(f"Console - load_to_deck({deck_id}) ignored, nothing selected")
            return False
        self.deck(deck_id).load(self.pending_track)
        self.cancel_load()
        return True

    # -- director ------------------------------------------------------------

    def set_director_enabled(self, enabled: bool) -> None:
        if enabled:
            self.director.enable()
        else:
            self.director.disable()

    def toggle_director(self) -> bool:
        self.set_director_enabled(not self.director.enabled)
        return self.director.enabled

    # -- lifecycle -----------------------------------------------------------

    def start(self, output_device=None, realtime: bool = True) -> None:
        """Start the control thread and, unless realtime is False, the output stream"""
        self.scheduler.start()
        if realtime:
            self.engine.start(output_device=output_device)

    def shutdown(self) -> None:
        logger.info("Console - Shutting down")
        self.director.disable()
        self.scheduler.stop()
        for deck in self.decks.values():
            deck.stop()
        self.engine.close()
        self.loader.shutdown()

    def status(self) -> Dict[str, Any]:
        return {
            'time': round(self.engine.current_time, 2),
            'engine': self.engine.state.value,
            'catalog': len(self.session.catalog),
            'director': self.director.state.name,
            'decks': {deck_id: deck.get_status() for deck_id, deck in self.decks.items()},
        }

    def status_line(self) -> str:
        parts = []
        for deck_id, deck in self.decks.items():
            marker = '>' if deck.is_playing else '-'
            title = deck.title or '(empty)'
            parts.append(f"{deck_id}{marker} {title} @{deck.volume:.2f}")
        return (f"t={self.engine.current_time:.1f}s | AI={self.director.state.name} | "
                f"tracks={len(self.session.catalog)} | " + " | ".join(parts))
