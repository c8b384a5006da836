from concurrent.futures import Future

import numpy as np
import pytest

from deckmix import config
from deckmix.console import Console
from deckmix.graph.buffer import AudioBuffer
from deckmix.graph.engine import AudioGraphEngine
from deckmix.models import Track
from deckmix.scheduler import ControlScheduler

SAMPLE_RATE = 8000
BLOCK_SIZE = 128


class ScriptedRng:
    """random.Random stand-in returning queued values, then a fixed fallback"""

    def __init__(self, values=(), fallback=0.99):
        self.values = list(values)
        self.fallback = fallback

    def random(self):
        return self.values.pop(0) if self.values else self.fallback


class FakeLoader:
    """TrackLoader stand-in returning pre-set tracks or failures"""

    def __init__(self):
        self.results = {}
        self.shut_down = False

    def _complete(self, key):
        future = Future()
        result = self.results[key]
        if isinstance(result, Exception):
            future.set_exception(result)
        else:
            future.set_result(result)
        return future

    def submit_file(self, path, title=None):
        return self._complete(path)

    def submit_url(self, url, title=None):
        return self._complete(url)

    def shutdown(self, wait=False):
        self.shut_down = True


def make_buffer(seconds=1.0, freq=440.0, channels=2, sample_rate=SAMPLE_RATE, amplitude=0.5):
    t = np.arange(int(seconds * sample_rate)) / sample_rate
    tone = amplitude * np.sin(2 * np.pi * freq * t)
    return AudioBuffer(np.tile(tone, (channels, 1)), sample_rate)


def make_track(title="Tone", seconds=1.0, freq=440.0):
    return Track(title, make_buffer(seconds, freq))


@pytest.fixture
def engine():
    eng = AudioGraphEngine(sample_rate=SAMPLE_RATE, block_size=BLOCK_SIZE)
    yield eng
    eng.close()


@pytest.fixture
def scheduler(engine):
    sched = ControlScheduler(time_source=engine.clock.get_current_time)
    engine.set_event_dispatcher(sched.call_soon)
    return sched


@pytest.fixture
def advance(engine, scheduler):
    """Render `seconds` of audio block by block, running due control calls after each block"""
    def _advance(seconds):
        remaining = int(round(seconds * engine.sample_rate))
        while remaining > 0:
            frames = min(engine.block_size, remaining)
            engine.render(frames)
            scheduler.run_due()
            remaining -= frames
        scheduler.run_due()
    return _advance


@pytest.fixture
def rng():
    return ScriptedRng()


@pytest.fixture
def loader():
    return FakeLoader()


@pytest.fixture
def console(engine, scheduler, loader, rng):
    return Console(app_config_module=config, engine=engine, scheduler=scheduler, loader=loader, rng=rng)


@pytest.fixture
def events(console):
    received = []
    console.add_observer(received.append)
    return received
