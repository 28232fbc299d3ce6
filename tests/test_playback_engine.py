import threading

import numpy as np
import pytest

from mobile.vibesflow.errors import ErrorKind, PlaybackUnavailableError
from mobile.vibesflow.events import Ended, ErrorEvent, WarningEvent
from mobile.vibesflow.playback import ChunkLoader, NetworkQuality, PlaybackEngine, PlaybackStatus, TimelineIndex
from mobile.vibesflow.playback.timeline import build_index
from mobile.vibesflow.schemas import ChunkDescriptor

from test_preloader import FakeStore, make_index


def ready_engine(values, *, preload=True, lookahead=3, gates=None):
    store = FakeStore(values)
    store.gates.update(gates or {})
    loader = ChunkLoader(store.fetch, decode=store.decode, fetch_timeout=2.0)
    engine = PlaybackEngine(loader, epsilon=0.05, lookahead=lookahead, channels=2, stream_id="rta_demo")
    engine.load(make_index(len(values)), preload=preload)
    assert engine.wait_until_ready(5)
    return engine


def kinds(events, cls):
    return [event.kind for event in events if isinstance(event, cls)]


def test_boundary_hand_off_crossfades_the_tail():
    engine = ready_engine({"/c/0": 1.0, "/c/1": 0.5})
    assert engine.status is PlaybackStatus.READY
    assert engine.play() is True

    first = engine.render(95)
    assert np.allclose(first, 1.0)
    assert engine.current_time == pytest.approx(0.95)

    second = engine.render(10)[:, 0]
    assert np.allclose(second, [1.0, 0.9, 0.8, 0.7, 0.6, 0.5, 0.5, 0.5, 0.5, 0.5], atol=1e-5)
    assert engine.state().current_chunk_index == 1
    engine.close()


def test_last_chunk_ends_playback():
    engine = ready_engine({"/c/0": 1.0, "/c/1": 0.5})
    engine.play()
    engine.advance(5.0)

    state = engine.state()
    assert engine.status is PlaybackStatus.ENDED
    assert state.is_playing is False
    assert state.current_time == pytest.approx(state.total_duration)
    assert any(isinstance(event, Ended) for event in engine.events.drain())
    assert engine.play() is False
    engine.close()


def test_seek_is_disabled_until_fully_loaded():
    engine = ready_engine({"/c/0": 1.0, "/c/1": 0.5}, preload=False)
    assert engine.is_fully_loaded is False
    assert engine.seek(1.5) is False
    assert engine.cursor.current_chunk_index == 0
    assert engine.cursor.current_offset == 0.0
    assert ErrorKind.SEEK_DISABLED in kinds(engine.events.drain(), WarningEvent)
    engine.close()


def test_seek_after_preload():
    engine = ready_engine({"/c/0": 1.0, "/c/1": 0.5})
    assert engine.is_fully_loaded is True
    assert engine.seek(1.5) is True
    assert engine.cursor.current_chunk_index == 1
    assert engine.cursor.current_offset == pytest.approx(0.5)
    assert engine.current_time == pytest.approx(1.5)

    engine.play()
    assert np.allclose(engine.render(10), 0.5)
    engine.close()


def test_failed_chunk_is_skipped():
    engine = ready_engine({"/c/0": 1.0, "/c/1": None, "/c/2": 0.25})
    assert engine.is_fully_loaded is False
    engine.play()
    engine.render(95)
    after = engine.render(10)
    assert np.allclose(after, 0.25)
    assert engine.state().current_chunk_index == 2
    assert ErrorKind.PLAYBACK_UNAVAILABLE in kinds(engine.events.drain(), WarningEvent)
    engine.close()


def test_unloaded_next_chunk_renders_silence_and_counts_a_gap():
    gate = threading.Event()
    engine = ready_engine({"/c/0": 1.0, "/c/1": 0.5}, preload=False, lookahead=0, gates={"/c/1": gate})
    engine.play()
    engine.render(95)

    waiting = engine.render(10)
    assert np.allclose(waiting, 0.0)
    assert engine.status is PlaybackStatus.PLAYING

    gate.set()
    engine.loader.load(engine.timeline[1])
    assert np.allclose(engine.render(10), 0.5)
    assert engine.network_quality is NetworkQuality.GOOD
    engine.close()


def test_pause_holds_position():
    engine = ready_engine({"/c/0": 1.0})
    engine.play()
    engine.render(20)
    assert engine.pause() is True
    assert np.allclose(engine.render(20), 0.0)
    assert engine.current_time == pytest.approx(0.2)
    assert engine.state().network_quality is NetworkQuality.EXCELLENT
    engine.close()


def test_stream_with_no_loadable_chunk_ends_with_error():
    engine = ready_engine({"/c/0": None})
    assert engine.status is PlaybackStatus.ENDED
    events = engine.events.drain()
    errors = [event for event in events if isinstance(event, ErrorEvent)]
    assert errors and errors[0].fatal is True
    assert errors[0].kind is ErrorKind.PLAYBACK_UNAVAILABLE
    engine.close()


def test_empty_timeline_cannot_load():
    engine = PlaybackEngine(ChunkLoader(lambda url, timeout: b""))
    with pytest.raises(PlaybackUnavailableError):
        engine.load(TimelineIndex([]))
    engine.close()


def test_loading_another_stream_fetches_its_own_chunks():
    store = FakeStore({"/a/0": 1.0, "/b/0": 0.25})
    engine = PlaybackEngine(ChunkLoader(store.fetch, decode=store.decode, fetch_timeout=2.0), epsilon=0.05)
    engine.load(make_index(1, prefix="/a"))
    assert engine.wait_until_ready(5)

    engine.load(make_index(1, prefix="/b"))
    assert engine.wait_until_ready(5)
    engine.play()
    assert np.allclose(engine.render(10), 0.25)
    assert store.fetches == ["/a/0", "/b/0"]
    engine.close()


def test_stream_closed_on_an_empty_window_is_seekable():
    store = FakeStore({"/c/0": 1.0, "/c/1": 0.5})
    items = [
        ChunkDescriptor(sequence=0, url="/c/0", duration=1.0),
        ChunkDescriptor(sequence=1, url="/c/1", duration=1.0),
        ChunkDescriptor(sequence=2, url="/c/2", duration=0.0, is_final=True),
    ]
    engine = PlaybackEngine(ChunkLoader(store.fetch, decode=store.decode, fetch_timeout=2.0), epsilon=0.05)
    engine.load(build_index(items), preload=True)
    assert engine.wait_until_ready(5)

    assert engine.is_fully_loaded is True
    assert engine.state().total_chunks == 2
    assert engine.seek(1.5) is True
    assert "/c/2" not in store.fetches
    engine.close()
