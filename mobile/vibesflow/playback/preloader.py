"""Concurrent chunk fetch + decode, shared by preloading and just-in-time loads."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout, as_completed
from typing import Callable, Dict, Iterable, Optional, Set

from ..errors import PlaybackUnavailableError, VibesFlowError
from ..events import EventChannel, Progress
from ..metrics import CHUNK_FETCHES
from .decoder import DecodedChunk, decode_chunk
from .timeline import ChunkTimelineEntry, TimelineIndex

LOGGER = logging.getLogger("vibesflow.preloader")

Fetcher = Callable[[str, float], bytes]


class ChunkLoader:
    """Bounded pool of fetch+decode jobs with a cache keyed by chunk URL.

    A chunk is fetched at most once at a time. Failed chunks are not retried.
    Keying by URL lets one loader serve several streams in turn.
    """

    def __init__(
        self,
        fetch: Fetcher,
        *,
        decode: Callable[[bytes], DecodedChunk] = decode_chunk,
        max_workers: int = 4,
        fetch_timeout: float = 20.0,
    ) -> None:
        self.fetch = fetch
        self.decode = decode
        self.fetch_timeout = fetch_timeout
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="chunk-fetch")
        self._lock = threading.Lock()
        self._cache: Dict[str, DecodedChunk] = {}
        self._failed: Set[str] = set()
        self._inflight: Dict[str, Future] = {}

    def submit(self, entry: ChunkTimelineEntry) -> Future:
        key = entry.source_url
        with self._lock:
            if key in self._cache or key in self._failed:
                done: Future = Future()
                done.set_result(self._cache.get(key))
                return done
            future = self._inflight.get(key)
            if future is None:
                future = self._executor.submit(self._load, entry)
                self._inflight[key] = future
            return future

    def _load(self, entry: ChunkTimelineEntry) -> Optional[DecodedChunk]:
        try:
            decoded = self.decode(self.fetch(entry.source_url, self.fetch_timeout))
        except VibesFlowError as exc:
            LOGGER.warning("Chunk %d unavailable: %s", entry.chunk_index, exc)
            self.mark_failed(entry)
            return None
        except Exception:
            LOGGER.exception("Unexpected failure loading chunk %d", entry.chunk_index)
            self.mark_failed(entry)
            return None
        CHUNK_FETCHES.labels(outcome="ok").inc()
        with self._lock:
            self._cache[entry.source_url] = decoded
            self._failed.discard(entry.source_url)
            self._inflight.pop(entry.source_url, None)
        return decoded

    def mark_failed(self, entry: ChunkTimelineEntry) -> None:
        CHUNK_FETCHES.labels(outcome="failed").inc()
        with self._lock:
            self._failed.add(entry.source_url)
            self._inflight.pop(entry.source_url, None)

    def load(self, entry: ChunkTimelineEntry, timeout: Optional[float] = None) -> DecodedChunk:
        """Blocking load. Raises PlaybackUnavailableError if the chunk cannot be had."""
        future = self.submit(entry)
        wait = self.fetch_timeout if timeout is None else timeout
        try:
            decoded = future.result(timeout=wait)
        except FutureTimeout as exc:
            self.mark_failed(entry)
            raise PlaybackUnavailableError(f"chunk {entry.chunk_index} timed out") from exc
        if decoded is None:
            raise PlaybackUnavailableError(f"chunk {entry.chunk_index} unavailable")
        return decoded

    def prefetch(self, entries: Iterable[ChunkTimelineEntry]) -> None:
        for entry in entries:
            self.submit(entry)

    def get(self, entry: ChunkTimelineEntry) -> Optional[DecodedChunk]:
        with self._lock:
            return self._cache.get(entry.source_url)

    def is_loaded(self, entry: ChunkTimelineEntry) -> bool:
        with self._lock:
            return entry.source_url in self._cache

    def has_failed(self, entry: ChunkTimelineEntry) -> bool:
        with self._lock:
            return entry.source_url in self._failed

    def is_pending(self, entry: ChunkTimelineEntry) -> bool:
        with self._lock:
            return entry.source_url in self._inflight

    def durations(self, index: TimelineIndex) -> Dict[int, float]:
        """Decoded durations of the chunks of ``index`` loaded so far."""
        with self._lock:
            return {
                entry.chunk_index: self._cache[entry.source_url].duration
                for entry in index
                if entry.source_url in self._cache
            }

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


class Preloader:
    """Load every chunk of a timeline ahead of playback."""

    def __init__(self, loader: ChunkLoader, *, events: Optional[EventChannel] = None) -> None:
        self.loader = loader
        self.events = events
        self.is_fully_loaded = False

    def preload_all(self, index: TimelineIndex) -> bool:
        total = len(index)
        futures = {self.loader.submit(entry): entry for entry in index}
        done = failed = 0
        # Each fetch is bounded by the loader's timeout; allow for queueing behind the pool.
        deadline = self.loader.fetch_timeout * max(1, total)
        try:
            for future in as_completed(futures, timeout=deadline):
                if future.result() is None:
                    failed += 1
                else:
                    done += 1
                self._progress(done, total, failed)
        except FutureTimeout:
            for future, entry in futures.items():
                if not future.done():
                    self.loader.mark_failed(entry)
                    failed += 1
            self._progress(done, total, failed)
        self.is_fully_loaded = total > 0 and done == total
        LOGGER.info("Preloaded %d/%d chunk(s), %d failed", done, total, failed)
        return self.is_fully_loaded

    def _progress(self, done: int, total: int, failed: int) -> None:
        if self.events:
            self.events.emit(Progress(stage="preload", done=done, total=total, failed=failed))


__all__ = ["ChunkLoader", "Fetcher", "Preloader"]
