# deckmix/config.py

import os
import logging
logger = logging.getLogger(__name__)

# --- Project Root Directory ---
PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))

# --- Download cache for fetched tracks ---
CACHE_DIR_NAME = "deckmix"
CACHE_DIR = os.path.join(
    os.environ.get("XDG_CACHE_HOME", os.path.join(os.path.expanduser("~"), ".cache")),
    CACHE_DIR_NAME,
)
DOWNLOADS_DIR = os.path.join(CACHE_DIR, "downloads")

# --- Audio engine defaults ---
# Environment overrides are read once at import time.
SAMPLE_RATE = int(os.environ.get("DECKMIX_SAMPLE_RATE", 44100))
BLOCK_SIZE = int(os.environ.get("DECKMIX_BLOCK_SIZE", 512))
OUTPUT_CHANNELS = 2
RING_BUFFER_SECONDS = 0.25  # Producer runs at most this far ahead of the device

# --- Channels ---
CHANNEL_IDS = ("A", "B", "C", "D")
DEFAULT_DECK_ID = "A"

# Fixed display attribute per channel, resolved when a Deck is built
DECK_COLORS = {
    "A": "#ff0055",
    "B": "#0088ff",
    "C": "#ffaa00",
    "D": "#00ff00",
}
DEFAULT_DECK_COLOR = "#ffffff"

# --- Deck parameters ---
VOLUME_TIME_CONSTANT = 0.1  # seconds, set_target_at_time constant for volume/mix changes
SWEEP_START_HZ = 100.0
SWEEP_END_HZ = 3000.0
SWEEP_SECONDS = 2.0
ANALYSER_FFT_SIZE = 2048

# --- Director parameters ---
SCAN_INTERVAL_SECONDS = 1.0
TRANSITION_PROBABILITY = 0.05  # per scan tick, stands in for "near the end of the track"
CROSSFADE_SECONDS = 5.0
TRANSITION_EFFECT_KIND = "filter"

# When True a deferred "stop outgoing deck" is skipped if that deck was
# reloaded or restarted after the transition was armed.
GUARD_STALE_DEFERRED_STOP = True

# --- Effects factory ---
ECHO_DELAY_SECONDS = 0.5
ECHO_FEEDBACK = 0.4
REVERB_SECONDS = 2.0
REVERB_CHANNELS = 2

# --- Acquisition ---
DEMO_TRACK_URL = "https://cdn.pixabay.com/download/audio/2022/05/27/audio_1808fbf07a.mp3"
DEMO_TRACK_TITLE = "Demo: Cyberpunk Beat (Online)"
FETCH_TIMEOUT_SECONDS = 30
ACQUISITION_WORKERS = 2


# --- Helper Function to Ensure Directory Existence ---
def ensure_dir_exists(dir_path):
    """Checks if a directory exists, and creates it if it doesn't."""
    if not os.path.exists(dir_path):
        try:
            os.makedirs(dir_path, exist_ok=True)
            logger.info(f"CONFIG: Created directory: {dir_path}")
        except OSError as e:
            logger.error(f"CONFIG - Could not create directory {dir_path}: {e}")


def get_deck_color(deck_id):
    """Display colour for a channel, falling back to white for unknown ids"""
    return DECK_COLORS.get(deck_id, DEFAULT_DECK_COLOR)


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    logger.info(f"Package Directory: {PACKAGE_DIR}")
    logger.info(f"Cache Directory: {CACHE_DIR}")
    logger.info(f"Audio: {SAMPLE_RATE} Hz, block {BLOCK_SIZE}, {OUTPUT_CHANNELS} channels")
    logger.info(f"Channels: {', '.join(CHANNEL_IDS)} (default {DEFAULT_DECK_ID})")
