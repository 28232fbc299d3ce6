import threading

import numpy as np
import pytest

from mobile.vibesflow.errors import PlaybackUnavailableError
from mobile.vibesflow.events import EventChannel, Progress
from mobile.vibesflow.playback.decoder import DecodedChunk
from mobile.vibesflow.playback.preloader import ChunkLoader, Preloader
from mobile.vibesflow.playback.timeline import build_index
from mobile.vibesflow.schemas import ChunkDescriptor

RATE = 100


class FakeStore:
    """Serves constant-valued chunks keyed by URL; ``None`` marks a broken chunk."""

    def __init__(self, values, seconds=1.0):
        self.values = values
        self.frames = int(seconds * RATE)
        self.fetches = []
        self.gates = {}
        self._lock = threading.Lock()

    def fetch(self, url, timeout):
        with self._lock:
            self.fetches.append(url)
        gate = self.gates.get(url)
        if gate is not None:
            gate.wait(timeout)
        if self.values[url] is None:
            raise PlaybackUnavailableError(f"{url} missing")
        return url.encode()

    def decode(self, data):
        value = self.values[data.decode()]
        return DecodedChunk(np.full((self.frames, 2), value, dtype=np.float32), RATE)


def make_index(count, seconds=1.0, prefix="/c"):
    return build_index(
        ChunkDescriptor(sequence=idx, url=f"{prefix}/{idx}", duration=seconds) for idx in range(count)
    )


def make_loader(store, **kwargs):
    return ChunkLoader(store.fetch, decode=store.decode, fetch_timeout=2.0, **kwargs)


def test_loader_caches_decoded_chunks():
    store = FakeStore({"/c/0": 0.5})
    loader = make_loader(store)
    entry = make_index(1)[0]
    first = loader.load(entry)
    second = loader.load(entry)
    assert first is second
    assert store.fetches == ["/c/0"]
    assert loader.is_loaded(entry)
    assert loader.durations(make_index(1)) == {0: pytest.approx(1.0)}
    loader.close()


def test_loader_marks_failures():
    store = FakeStore({"/c/0": None})
    loader = make_loader(store)
    entry = make_index(1)[0]
    with pytest.raises(PlaybackUnavailableError):
        loader.load(entry)
    assert loader.has_failed(entry)
    assert not loader.is_loaded(entry)
    loader.close()


def test_preload_all_tolerates_failures():
    store = FakeStore({"/c/0": 0.1, "/c/1": None, "/c/2": 0.3})
    events = EventChannel()
    preloader = Preloader(make_loader(store), events=events)

    assert preloader.preload_all(make_index(3)) is False
    assert preloader.is_fully_loaded is False

    progress = [event for event in events.drain() if isinstance(event, Progress)]
    assert len(progress) == 3
    assert progress[-1].done == 2
    assert progress[-1].failed == 1
    assert progress[-1].total == 3
    preloader.loader.close()


def test_preload_all_sets_fully_loaded():
    store = FakeStore({f"/c/{idx}": 0.1 * idx for idx in range(5)})
    preloader = Preloader(make_loader(store, max_workers=2))
    assert preloader.preload_all(make_index(5)) is True
    assert preloader.is_fully_loaded is True
    assert sorted(store.fetches) == [f"/c/{idx}" for idx in range(5)]
    preloader.loader.close()


def test_cache_is_per_url_across_streams():
    store = FakeStore({"/a/0": 1.0, "/b/0": 0.25})
    loader = make_loader(store)
    first = make_index(1, prefix="/a")[0]
    other = make_index(1, prefix="/b")[0]
    assert first.chunk_index == other.chunk_index

    loader.load(first)
    assert not loader.is_loaded(other)
    assert np.allclose(loader.load(other).samples, 0.25)
    assert store.fetches == ["/a/0", "/b/0"]
    loader.close()
