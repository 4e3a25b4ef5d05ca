"""Shared pytest configuration and fixtures for the Image2Tone test suite."""

import sys
import threading
import time
from pathlib import Path

import numpy as np
import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from image2tone_pkg.image_proc import RawFrame  # noqa: E402
from image2tone_pkg.sinks import DEFAULT_PCM  # noqa: E402


# =============================================================================
# Fakes
# =============================================================================

class RecordingSink:
    """Audio sink that records every buffer instead of playing it."""

    def __init__(self, name="sink", delay=0.0, journal=None):
        self.name = name
        self.delay = delay
        self.journal = journal if journal is not None else []
        self.buffers = []
        self.formats = []
        self.closed = False
        self.started = threading.Event()
        self.lock = threading.Lock()

    def play(self, waveform, fmt=DEFAULT_PCM):
        self.started.set()
        if self.delay:
            time.sleep(self.delay)
        with self.lock:
            self.buffers.append(np.array(waveform, copy=True))
            self.formats.append(fmt)
            self.journal.append((self.name, time.monotonic()))

    def close(self):
        self.closed = True


class FailingSink:
    def __init__(self, exc):
        self.exc = exc
        self.closed = False

    def play(self, waveform, fmt=DEFAULT_PCM):
        raise self.exc

    def close(self):
        self.closed = True


class RecordingDisplay:
    def __init__(self):
        self.frames = []
        self.texts = []

    def show_frame(self, grid):
        self.frames.append(np.array(grid, copy=True))

    def show_frequencies(self, text):
        self.texts.append(text)


def solid_frame(rgb, width=32, height=24):
    px = np.empty((height, width, 3), dtype=np.uint8)
    px[...] = rgb
    return RawFrame(pixels=px)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def project_root() -> Path:
    return PROJECT_ROOT


@pytest.fixture
def black_frame():
    return solid_frame((0, 0, 0))


@pytest.fixture
def white_frame():
    return solid_frame((255, 255, 255))


@pytest.fixture
def gradient_frame():
    """Luminance rising left to right, arbitrary non-square size."""
    width, height = 200, 90
    ramp = np.linspace(0, 255, width).astype(np.uint8)
    px = np.repeat(ramp[None, :, None], height, axis=0).repeat(3, axis=2)
    return RawFrame(pixels=px)


@pytest.fixture
def display():
    return RecordingDisplay()
