import threading
import time
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from image2tone_pkg.audio import sequence_columns
from image2tone_pkg.errors import SinkUnavailableError, SourceUnreadableError
from image2tone_pkg.image_proc import RawFrame, reduce_frame
from image2tone_pkg.live_core import (
    CycleStatus,
    PlaybackController,
    PlaybackSession,
    SessionConfig,
    SessionState,
)
from image2tone_pkg.sinks import ClickCue, PcmFormat
from image2tone_pkg.video import ImageFrameSource, IteratorFrameSource

from conftest import FailingSink, RecordingDisplay, RecordingSink, solid_frame


def fast_config(**kw):
    kw.setdefault("cycle_s", 0.01)
    kw.setdefault("idle_wait_s", 0.005)
    kw.setdefault("click", None)
    return SessionConfig(**kw)


def wait_until(pred, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if pred():
            return True
        time.sleep(0.005)
    return False


class ExplodingSource:
    kind = "video"

    def open(self):
        pass

    def read(self):
        raise SourceUnreadableError("corrupt stream")

    def close(self):
        pass


class ExplodingDisplay(RecordingDisplay):
    def show_frame(self, grid):
        raise RuntimeError("window closed")


# ─────────────────────────────────────────────
#  Single cycles
# ─────────────────────────────────────────────

def test_new_session_starts_paused(black_frame, display):
    sink = RecordingSink()
    session = PlaybackSession(IteratorFrameSource([black_frame]), sink, display, fast_config())
    assert session.paused
    assert session.state is SessionState.IDLE
    assert session.run_cycle().status is CycleStatus.PAUSED
    assert sink.buffers == []


def test_played_cycle_delivers_waveform_and_log(gradient_frame, display):
    sink = RecordingSink()
    session = PlaybackSession(IteratorFrameSource([gradient_frame]), sink, display, fast_config())
    session.resume()

    result = session.run_cycle()

    assert result.status is CycleStatus.PLAYED
    assert len(result.frequencies) == 64
    (buf,) = sink.buffers
    expected, _ = sequence_columns(reduce_frame(gradient_frame))
    assert buf.dtype == np.int8 and buf.size == 44100
    assert np.array_equal(buf, expected)
    assert display.frames[0].shape == (64, 64)
    assert display.texts[0].splitlines()[0].startswith("Column 0: ")


def test_image_grid_is_reduced_once(black_frame, display):
    # Only one frame available: later cycles must reuse the cached grid
    source = IteratorFrameSource([black_frame], kind="image")
    session = PlaybackSession(source, RecordingSink(), display, fast_config())
    session.resume()
    statuses = [session.run_cycle().status for _ in range(3)]
    assert statuses == [CycleStatus.PLAYED] * 3


def test_video_frames_are_not_cached(display):
    frames = [solid_frame((0, 0, 0)), solid_frame((255, 255, 255))]
    session = PlaybackSession(IteratorFrameSource(frames), RecordingSink(), display, fast_config())
    session.resume()
    a = session.run_cycle()
    b = session.run_cycle()
    assert a.frequencies[0][1] == 20.0
    assert b.frequencies[0][1] == 7220.0
    assert session.run_cycle().status is CycleStatus.END_OF_STREAM


def test_no_frame_ready(black_frame, display):
    session = PlaybackSession(IteratorFrameSource([None, black_frame]), RecordingSink(), display, fast_config())
    session.resume()
    assert session.run_cycle().status is CycleStatus.NO_FRAME
    assert session.run_cycle().status is CycleStatus.PLAYED


def test_bad_video_frame_is_skipped_not_fatal(black_frame, display):
    empty = RawFrame(pixels=np.zeros((0, 0, 3), dtype=np.uint8))
    sink = RecordingSink()
    session = PlaybackSession(IteratorFrameSource([empty, black_frame]), sink, display, fast_config())
    session.resume()
    first = session.run_cycle()
    assert first.status is CycleStatus.SKIPPED
    assert not first.ends_session
    assert session.run_cycle().status is CycleStatus.PLAYED
    assert len(sink.buffers) == 1


def test_unreadable_image_is_retried(tmp_path: Path, display):
    path = tmp_path / "late.png"
    session = PlaybackSession(ImageFrameSource(path), RecordingSink(), display, fast_config())
    session.resume()
    assert session.run_cycle().status is CycleStatus.SKIPPED

    Image.new("RGB", (8, 8), (255, 255, 255)).save(path)
    result = session.run_cycle()
    assert result.status is CycleStatus.PLAYED
    assert result.frequencies[0][1] == 7220.0


def test_video_decode_failure_ends_session(display):
    session = PlaybackSession(ExplodingSource(), RecordingSink(), display, fast_config())
    session.resume()
    result = session.run_cycle()
    assert result.status is CycleStatus.SOURCE_FAILED
    assert result.ends_session


def test_sink_unavailable_skips_cycle(black_frame, display):
    session = PlaybackSession(
        IteratorFrameSource([black_frame]), FailingSink(SinkUnavailableError("busy")), display, fast_config()
    )
    session.resume()
    result = session.run_cycle()
    assert result.status is CycleStatus.SKIPPED
    assert "busy" in result.reason


def test_display_failure_skips_before_audio(black_frame):
    sink = RecordingSink()
    session = PlaybackSession(IteratorFrameSource([black_frame]), sink, ExplodingDisplay(), fast_config())
    session.resume()
    assert session.run_cycle().status is CycleStatus.SKIPPED
    assert sink.buffers == []


def test_click_cue_follows_each_played_cycle(black_frame, display):
    clip = np.array([9, 9], dtype=np.int8)
    cue = ClickCue(clip)
    sink = RecordingSink()
    session = PlaybackSession(IteratorFrameSource([black_frame]), sink, display, fast_config(click=cue))
    session.resume()
    session.run_cycle()
    cue.wait(timeout=2.0)
    sizes = sorted(b.size for b in sink.buffers)
    assert sizes == [2, 44100]


def test_click_cue_plays_in_session_format(black_frame, display):
    fmt = PcmFormat(sample_rate=22050)
    cue = ClickCue(np.array([9, 9], dtype=np.int8))
    sink = RecordingSink()
    session = PlaybackSession(
        IteratorFrameSource([black_frame]), sink, display, fast_config(click=cue, pcm_format=fmt)
    )
    session.resume()
    session.run_cycle()
    cue.wait(timeout=2.0)
    assert [f.sample_rate for f in sink.formats] == [22050, 22050]


def test_toggle_pause_flips_flag(black_frame, display):
    session = PlaybackSession(IteratorFrameSource([black_frame]), RecordingSink(), display, fast_config())
    assert session.toggle_pause() is False
    assert session.toggle_pause() is True


# ─────────────────────────────────────────────
#  Worker threads
# ─────────────────────────────────────────────

def test_image_session_stops_after_max_cycles(black_frame, display):
    sink = RecordingSink()
    source = IteratorFrameSource([black_frame], kind="image")
    session = PlaybackSession(source, sink, display, fast_config(max_cycles=3))
    session.resume()
    session.start()

    assert session.join(timeout=5.0)
    assert session.cycles_played == 3
    assert len(sink.buffers) == 3
    assert sink.closed and source.closed
    assert session.state is SessionState.STOPPED


def test_video_session_ends_at_end_of_stream(display):
    frames = [solid_frame((v, v, v)) for v in (0, 100, 200)]
    sink = RecordingSink()
    source = IteratorFrameSource(frames)
    session = PlaybackSession(source, sink, display, fast_config())
    session.resume()
    session.start()

    assert session.join(timeout=5.0)
    assert session.cycles_played == 3
    assert source.closed


def test_paused_session_writes_nothing_and_stops_promptly(black_frame, display):
    sink = RecordingSink()
    session = PlaybackSession(IteratorFrameSource([black_frame] * 10), sink, display, fast_config())
    session.start()
    time.sleep(0.1)
    t0 = time.monotonic()
    session.stop()

    assert time.monotonic() - t0 < 1.0
    assert not session.is_alive
    assert sink.buffers == []


def test_paused_image_session_shows_frame_on_open(white_frame, display):
    sink = RecordingSink()
    source = IteratorFrameSource([white_frame], kind="image")
    session = PlaybackSession(source, sink, display, fast_config())
    session.start()

    assert wait_until(lambda: len(display.frames) >= 1)
    time.sleep(0.05)
    session.stop()

    assert session.paused
    assert len(display.frames) == 1
    assert np.array_equal(display.frames[0], reduce_frame(white_frame))
    assert sink.buffers == []


def test_image_preview_is_reused_once_playing(black_frame, display):
    # Single frame: consumed by the preview, then served from the cache
    source = IteratorFrameSource([black_frame], kind="image")
    session = PlaybackSession(source, RecordingSink(), display, fast_config(max_cycles=2))
    session.start()
    assert wait_until(lambda: len(display.frames) >= 1)
    session.resume()

    assert session.join(timeout=5.0)
    assert session.cycles_played == 2


def test_pause_mid_cycle_keeps_buffer_intact(gradient_frame, display):
    sink = RecordingSink(delay=0.1)
    source = IteratorFrameSource([gradient_frame], kind="image")
    session = PlaybackSession(source, sink, display, fast_config())
    session.resume()
    session.start()

    assert sink.started.wait(timeout=5.0)
    session.pause()                      # in-flight cycle is still playing
    assert wait_until(lambda: len(sink.buffers) >= 1)
    time.sleep(0.1)
    played = len(sink.buffers)
    session.stop()

    expected, _ = sequence_columns(reduce_frame(gradient_frame))
    assert np.array_equal(sink.buffers[0], expected)
    assert len(sink.buffers) == played


def test_observer_failure_does_not_kill_worker(black_frame, display):
    def boom(session, result):
        raise RuntimeError("observer bug")

    source = IteratorFrameSource([black_frame], kind="image")
    session = PlaybackSession(source, RecordingSink(), display, fast_config(max_cycles=2), on_cycle=boom)
    session.resume()
    session.start()
    assert session.join(timeout=5.0)
    assert session.cycles_played == 2


# ─────────────────────────────────────────────
#  Controller: one active session
# ─────────────────────────────────────────────

def test_new_session_replaces_old_one_after_join(black_frame, white_frame, display):
    journal = []
    names = iter(["A", "B"])
    sinks = []

    def factory():
        sink = RecordingSink(name=next(names), delay=0.02, journal=journal)
        sinks.append(sink)
        return sink

    controller = PlaybackController(display, audio_sink_factory=factory, config=fast_config())
    first = controller.start(IteratorFrameSource([black_frame], kind="image"), playing=True)
    assert wait_until(lambda: len(sinks[0].buffers) >= 2)

    second = controller.start(IteratorFrameSource([white_frame], kind="image"), playing=True)
    assert not first.is_alive
    assert first.state is SessionState.STOPPED
    assert sinks[0].closed
    writes_a = len(sinks[0].buffers)

    assert wait_until(lambda: len(sinks[1].buffers) >= 2)
    controller.stop()

    assert len(sinks[0].buffers) == writes_a
    order = [name for name, _ in journal]
    assert order == sorted(order)            # every A write precedes every B write
    assert controller.current is None
    assert not second.is_alive


def test_controller_toggle_without_session(display):
    controller = PlaybackController(display, audio_sink_factory=RecordingSink, config=fast_config())
    assert controller.toggle_pause() is None


def test_controller_toggle_drives_current_session(black_frame, display):
    controller = PlaybackController(display, audio_sink_factory=RecordingSink, config=fast_config())
    session = controller.start(IteratorFrameSource([black_frame], kind="image"))
    assert session.paused
    assert controller.toggle_pause() is False
    assert not session.paused
    controller.stop()
    assert not session.is_alive


def test_session_cannot_start_twice(black_frame, display):
    session = PlaybackSession(IteratorFrameSource([black_frame]), RecordingSink(), display, fast_config())
    session.start()
    try:
        with pytest.raises(RuntimeError):
            session.start()
    finally:
        session.stop()


def test_stop_is_callable_from_another_thread(black_frame, display):
    session = PlaybackSession(IteratorFrameSource([black_frame], kind="image"), RecordingSink(), display, fast_config())
    session.resume()
    session.start()
    t = threading.Thread(target=session.stop)
    t.start()
    t.join(timeout=5.0)
    assert not t.is_alive()
    assert not session.is_alive
