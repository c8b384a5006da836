import pytest

from deckmix import config
from deckmix.errors import AcquisitionFailure
from deckmix.events import AcquisitionFailed, DeckTitleChanged, TrackAdded
from deckmix.graph.engine import EngineState
from deckmix.models import DeckState

from .conftest import make_track


def test_console_builds_four_decks_in_channel_order(console):
    assert list(console.decks) == list(config.CHANNEL_IDS)
    assert console.session.decks == console.decks
    assert console.session.director is console.director
    with pytest.raises(KeyError):
        console.deck("E")


def test_add_track_appends_and_emits(console, events):
    assert console.add_track(make_track("one")) == 0
    assert console.add_track(make_track("two")) == 1
    assert [track.title for track in console.catalog] == ["one", "two"]
    assert events == [TrackAdded(0, "one"), TrackAdded(1, "two")]


def test_prompt_then_load_binds_pending_track(console, events):
    console.add_track(make_track("song"))
    console.prompt_load(0)
    assert console.pending_track.title == "song"

    assert console.load_to_deck("C") is True
    assert console.deck("C").state is DeckState.LOADED
    assert console.deck("C").title == "song"
    assert console.pending_track is None
    assert DeckTitleChanged("C", "song") in events


def test_load_to_deck_without_selection_does_nothing(console):
    console.add_track(make_track("song"))
    console.prompt_load(0)
    console.cancel_load()
    assert console.load_to_deck("A") is False
    assert console.deck("A").state is DeckState.IDLE


def test_prompt_load_rejects_bad_index(console):
    with pytest.raises(IndexError):
        console.prompt_load(3)


def test_import_file_adds_track_on_control_thread(console, loader, scheduler, events):
    loader.results["song.wav"] = make_track("song.wav")
    future = console.import_file("song.wav")
    assert not future.done()
    assert len(console.catalog) == 0

    scheduler.run_due()
    assert future.result() == 0
    assert console.catalog[0].title == "song.wav"
    assert TrackAdded(0, "song.wav") in events


def test_failed_import_reports_and_leaves_state_alone(console, loader, scheduler, events):
    console.add_track(make_track("keep"))
    console.deck("A").load(console.catalog[0])
    loader.results["broken.mp3"] = AcquisitionFailure("broken.mp3", "decode failed: bad header")

    future = console.import_file("broken.mp3")
    scheduler.run_due()

    error = future.exception()
    assert isinstance(error, AcquisitionFailure)
    assert error.reason == "decode failed: bad header"
    assert AcquisitionFailed("broken.mp3", "decode failed: bad header") in events
    assert len(console.catalog) == 1
    assert console.deck("A").title == "keep"
    assert console.deck("A").state is DeckState.LOADED


def test_import_demo_fetches_configured_url(console, loader, scheduler):
    loader.results[config.DEMO_TRACK_URL] = make_track(config.DEMO_TRACK_TITLE)
    future = console.import_demo()
    scheduler.run_due()
    assert future.result() == 0
    assert console.catalog[0].title == config.DEMO_TRACK_TITLE


def test_toggle_director(console):
    assert console.toggle_director() is True
    assert console.session.director_enabled is True
    assert console.toggle_director() is False
    assert console.session.director_enabled is False


def test_submit_runs_on_next_pass(console, scheduler):
    seen = []
    console.submit(seen.append, "x")
    assert seen == []
    scheduler.run_due()
    assert seen == ["x"]


def test_status_line_and_status(console):
    console.add_track(make_track("song"))
    console.deck("B").load(console.catalog[0])
    console.deck("B").play()

    line = console.status_line()
    assert "B> song" in line
    assert "A- (empty)" in line
    assert "tracks=1" in line

    status = console.status()
    assert status['engine'] == "running"
    assert status['catalog'] == 1
    assert status['director'] == "OFF"
    assert status['decks']['B']['state'] == "PLAYING"


def test_shutdown_closes_engine_and_loader(console, engine, loader):
    console.add_track(make_track("song"))
    console.deck("A").load(console.catalog[0])
    console.deck("A").play()
    console.shutdown()
    assert engine.state is EngineState.CLOSED
    assert loader.shut_down is True
    assert console.deck("A").state is DeckState.LOADED


def test_failing_observer_does_not_reach_the_core(console, events):
    def broken(event):
        raise RuntimeError("ui went away")

    console.add_observer(broken)
    assert console.add_track(make_track("song")) == 0
    assert TrackAdded(0, "song") in events
