import os

import numpy as np
import pytest
import requests

from deckmix import acquisition
from deckmix.acquisition import TrackLoader
from deckmix.errors import AcquisitionFailure

from .conftest import SAMPLE_RATE


class FakeResponse:
    def __init__(self, content=b"", status_code=200):
        self.content = content
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error")


@pytest.fixture
def downloads_dir(tmp_path):
    return str(tmp_path / "downloads")


@pytest.fixture
def track_loader(downloads_dir):
    loader = TrackLoader(SAMPLE_RATE, downloads_dir=downloads_dir, timeout=5, max_workers=1)
    yield loader
    loader.shutdown(wait=True)


@pytest.fixture
def fake_decoder(monkeypatch):
    """Replace librosa.load with a stub that records the paths it was asked for"""
    calls = []

    def load(path, sr=None, mono=True):
        calls.append((path, sr, mono, os.path.exists(path)))
        return np.full((2, SAMPLE_RATE // 2), 0.1, dtype=np.float32), sr

    monkeypatch.setattr(acquisition.librosa, "load", load)
    return calls


def test_decode_file_keeps_channels_at_engine_rate(track_loader, fake_decoder, tmp_path):
    path = tmp_path / "groove.wav"
    path.write_bytes(b"RIFF")
    track = track_loader.decode_file(str(path))
    assert track.title == "groove.wav"
    assert track.buffer.number_of_channels == 2
    assert track.buffer.sample_rate == SAMPLE_RATE
    assert track.duration == pytest.approx(0.5)
    assert fake_decoder == [(str(path), SAMPLE_RATE, False, True)]


def test_decode_missing_file_fails(track_loader, fake_decoder, tmp_path):
    with pytest.raises(AcquisitionFailure) as excinfo:
        track_loader.decode_file(str(tmp_path / "nope.wav"))
    assert excinfo.value.reason == "file not found"
    assert fake_decoder == []


def test_decoder_errors_become_acquisition_failures(track_loader, tmp_path, monkeypatch):
    def broken(path, sr=None, mono=True):
        raise RuntimeError("not audio")

    monkeypatch.setattr(acquisition.librosa, "load", broken)
    path = tmp_path / "notes.txt"
    path.write_text("hello")
    with pytest.raises(AcquisitionFailure) as excinfo:
        track_loader.decode_file(str(path))
    assert excinfo.value.reason.startswith("decode failed")


def test_empty_decode_fails(track_loader, tmp_path, monkeypatch):
    monkeypatch.setattr(acquisition.librosa, "load",
                        lambda path, sr=None, mono=True: (np.zeros((2, 0), dtype=np.float32), sr))
    path = tmp_path / "silence.wav"
    path.write_bytes(b"RIFF")
    with pytest.raises(AcquisitionFailure) as excinfo:
        track_loader.decode_file(str(path))
    assert excinfo.value.reason == "no audio frames decoded"


def test_fetch_url_decodes_and_removes_download(track_loader, fake_decoder, downloads_dir, monkeypatch):
    requested = []

    def get(url, timeout=None):
        requested.append((url, timeout))
        return FakeResponse(b"ID3 fake mp3 payload")

    monkeypatch.setattr(acquisition.requests, "get", get)
    track = track_loader.fetch_url("https://example.com/music/beat%20one.mp3")

    assert requested == [("https://example.com/music/beat%20one.mp3", 5)]
    assert track.title == "beat one.mp3"
    decoded_path = fake_decoder[0][0]
    assert decoded_path.endswith(".mp3")
    assert fake_decoder[0][3] is True
    assert os.listdir(downloads_dir) == []


def test_fetch_http_error_fails(track_loader, fake_decoder, monkeypatch):
    monkeypatch.setattr(acquisition.requests, "get", lambda url, timeout=None: FakeResponse(status_code=404))
    with pytest.raises(AcquisitionFailure) as excinfo:
        track_loader.fetch_url("https://example.com/missing.mp3")
    assert excinfo.value.reason.startswith("fetch failed")
    assert fake_decoder == []


def test_fetch_connection_error_fails(track_loader, monkeypatch):
    def refuse(url, timeout=None):
        raise requests.exceptions.ConnectionError("refused")

    monkeypatch.setattr(acquisition.requests, "get", refuse)
    with pytest.raises(AcquisitionFailure) as excinfo:
        track_loader.fetch_url("https://example.com/a.mp3")
    assert excinfo.value.source == "https://example.com/a.mp3"


def test_fetch_empty_body_fails(track_loader, monkeypatch):
    monkeypatch.setattr(acquisition.requests, "get", lambda url, timeout=None: FakeResponse(b""))
    with pytest.raises(AcquisitionFailure) as excinfo:
        track_loader.fetch_url("https://example.com/a.mp3")
    assert excinfo.value.reason == "empty response body"


def test_submit_file_runs_on_worker(track_loader, fake_decoder, tmp_path):
    path = tmp_path / "loop.flac"
    path.write_bytes(b"fLaC")
    future = track_loader.submit_file(str(path), title="Loop")
    assert future.result(timeout=5).title == "Loop"

    missing = track_loader.submit_file(str(tmp_path / "gone.flac"))
    assert isinstance(missing.exception(timeout=5), AcquisitionFailure)
