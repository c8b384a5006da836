# deckmix/acquisition.py
# Decodes local files and fetched URLs into Tracks, off the control thread

import os
import tempfile
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional
from urllib.parse import unquote, urlparse
import logging

import librosa
import requests

from . import config
from .errors import AcquisitionFailure
from .graph.buffer import AudioBuffer
from .models import Track

logger = logging.getLogger(__name__)


class TrackLoader:
    """Blocking decode/fetch helpers plus a small worker pool for async use"""

    def __init__(self, sample_rate: int, downloads_dir: str = config.DOWNLOADS_DIR,
                 timeout: float = config.FETCH_TIMEOUT_SECONDS, max_workers: int = config.ACQUISITION_WORKERS):
        self.sample_rate = sample_rate
        self.downloads_dir = downloads_dir
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="TrackLoader")

    def decode_file(self, path: str, title: Optional[str] = None) -> Track:
        """Decode an audio file at the engine sample rate, keeping its channels"""
        if not os.path.isfile(path):
            raise AcquisitionFailure(path, "file not found")

        logger.debug(f"TrackLoader: decoding {path}")
        try:
            samples, sr = librosa.load(path, sr=self.sample_rate, mono=False)
        except Exception as e:
            raise AcquisitionFailure(path, f"decode failed: {e}") from e

        if samples.size == 0:
            raise AcquisitionFailure(path, "no audio frames decoded")

        track = Track(title or os.path.basename(path), AudioBuffer(samples, sr))
        logger.info(f"TrackLoader: decoded '{track.title}' ({track.duration:.1f}s, "
                    f"{track.buffer.number_of_channels} ch)")
        return track

    def fetch_url(self, url: str, title: Optional[str] = None) -> Track:
        """Download to the cache directory, decode, then remove the download"""
        logger.info(f"TrackLoader: fetching {url}")
        try:
            response = requests.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise AcquisitionFailure(url, f"fetch failed: {e}") from e

        if not response.content:
            raise AcquisitionFailure(url, "empty response body")

        name = os.path.basename(unquote(urlparse(url).path)) or "download"
        suffix = os.path.splitext(name)[1] or ".mp3"
        config.ensure_dir_exists(self.downloads_dir)
        try:
            with tempfile.NamedTemporaryFile(suffix=suffix, dir=self.downloads_dir, delete=False) as handle:
                handle.write(response.content)
                temp_path = handle.name
        except OSError as e:
            raise AcquisitionFailure(url, f"could not store download: {e}") from e

        try:
            return self.decode_file(temp_path, title=title or name)
        finally:
            try:
                os.remove(temp_path)
            except OSError as e:
                logger.warning(f"TrackLoader: could not remove {temp_path}: {e}")

    def submit_file(self, path: str, title: Optional[str] = None) -> Future:
        return self._executor.submit(self.decode_file, path, title)

    def submit_url(self, url: str, title: Optional[str] = None) -> Future:
        return self._executor.submit(self.fetch_url, url, title)

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=True)
