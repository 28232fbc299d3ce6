"""Gapless playback over a chunk timeline."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Optional

import numpy as np

from ..errors import ErrorKind, PlaybackUnavailableError
from ..events import Ended, ErrorEvent, EventChannel, WarningEvent
from ..metrics import PLAYBACK_GAPS
from .decoder import AudioHandle
from .preloader import ChunkLoader, Preloader
from .timeline import ChunkTimelineEntry, TimelineIndex

LOGGER = logging.getLogger("vibesflow.playback")


class PlaybackStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"


class NetworkQuality(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    POOR = "poor"


@dataclass(slots=True)
class PlaybackCursor:
    current_chunk_index: int = 0
    current_offset: float = 0.0
    is_playing: bool = False


@dataclass(frozen=True, slots=True)
class PlayerState:
    is_playing: bool
    current_chunk_index: int
    total_chunks: int
    current_time: float
    total_duration: float
    buffer_health: float
    network_quality: NetworkQuality


def _fit_channels(block: np.ndarray, channels: int) -> np.ndarray:
    have = block.shape[1]
    if have == channels:
        return block
    if have > channels:
        return block[:, :channels]
    return np.concatenate([block] + [block[:, -1:]] * (channels - have), axis=1)


class PlaybackEngine:
    """Plays a :class:`TimelineIndex` chunk by chunk.

    Each chunk is handed off ``epsilon`` seconds before its end; the skipped
    tail is faded out over the start of the next chunk. When the next chunk is
    not decoded yet it is requested immediately and silence is rendered until
    it arrives, which counts as a gap against network quality. Chunks that
    cannot be fetched or decoded are skipped.

    ``render`` is meant to be called from an audio output callback; ``advance``
    drives the same state machine without producing audio.
    """

    def __init__(
        self,
        loader: ChunkLoader,
        *,
        events: Optional[EventChannel] = None,
        epsilon: float = 0.05,
        lookahead: int = 3,
        quality_window: int = 20,
        channels: int = 2,
        stream_id: Optional[str] = None,
    ) -> None:
        self.loader = loader
        self.events = events or EventChannel()
        self.epsilon = max(0.0, epsilon)
        self.lookahead = max(0, lookahead)
        self.channels = max(1, channels)
        self.stream_id = stream_id
        self.status = PlaybackStatus.IDLE
        self.timeline: Optional[TimelineIndex] = None
        self.sample_rate: Optional[int] = None
        self.is_fully_loaded = False
        self._preloader = Preloader(loader, events=self.events)
        self._lock = threading.RLock()
        self._ready = threading.Event()
        self._generation = 0
        self._index = 0
        self._start_offset = 0.0
        self._handle: Optional[AudioHandle] = None
        self._tail: Optional[np.ndarray] = None
        self._ramp: Optional[np.ndarray] = None
        self._waiting = False
        self._health: Deque[float] = deque(maxlen=max(1, quality_window))

    # loading -----------------------------------------------------------------

    def load(self, index: TimelineIndex, *, preload: bool = False) -> None:
        """Start loading ``index`` in the background; see :meth:`wait_until_ready`."""
        if not len(index):
            raise PlaybackUnavailableError("stream has no chunks")
        with self._lock:
            self._generation += 1
            generation = self._generation
            self.status = PlaybackStatus.LOADING
            self.timeline = index
            self.is_fully_loaded = False
            self._index = 0
            self._start_offset = 0.0
            self._handle = None
            self._tail = self._ramp = None
            self._waiting = False
            self._health.clear()
            self._ready.clear()
        thread = threading.Thread(
            target=self._prepare, args=(index, preload, generation), name="playback-load", daemon=True
        )
        thread.start()

    def _prepare(self, index: TimelineIndex, preload: bool, generation: int) -> None:
        fully_loaded = self._preloader.preload_all(index) if preload else False
        first: Optional[int] = None
        for entry in index:
            if preload:
                if self.loader.is_loaded(entry):
                    first = entry.chunk_index
                    break
                continue
            try:
                self.loader.load(entry)
            except PlaybackUnavailableError as exc:
                self._warn_unavailable(entry, str(exc))
                continue
            first = entry.chunk_index
            break

        with self._lock:
            if generation != self._generation:
                return
            if first is None:
                self.status = PlaybackStatus.ENDED
                self.events.emit(
                    ErrorEvent(ErrorKind.PLAYBACK_UNAVAILABLE, "no chunk of the stream could be loaded", fatal=True)
                )
                self.events.emit(Ended(self.stream_id))
                self._ready.set()
                return
            self.is_fully_loaded = fully_loaded
            self.timeline = index.refine(self.loader.durations(index))
            self._index = first
            decoded = self.loader.get(index[first])
            self.sample_rate = decoded.sample_rate if decoded else None
            self._prefetch()
            self.status = PlaybackStatus.READY
            self._health.append(self._buffer_health())
        LOGGER.info(
            "Stream ready: %d chunk(s), %.1fs%s",
            len(index),
            self.timeline.total_duration,
            " (fully loaded)" if fully_loaded else "",
        )
        self._ready.set()

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        return self._ready.wait(timeout)

    # commands ----------------------------------------------------------------

    def play(self) -> bool:
        with self._lock:
            if self.status in (PlaybackStatus.READY, PlaybackStatus.PAUSED):
                self.status = PlaybackStatus.PLAYING
                return True
            return self.status is PlaybackStatus.PLAYING

    def pause(self) -> bool:
        with self._lock:
            if self.status is PlaybackStatus.PLAYING:
                self.status = PlaybackStatus.PAUSED
                return True
            return False

    def seek(self, t: float) -> bool:
        """Jump to global time ``t``. Only possible once every chunk is decoded."""
        with self._lock:
            if not self.is_fully_loaded or self.timeline is None:
                self.events.emit(
                    WarningEvent(ErrorKind.SEEK_DISABLED, "seeking is available once the stream is fully loaded")
                )
                return False
            index, offset = self.timeline.locate(t)
            decoded = self.loader.get(self.timeline[index])
            if decoded is None:
                self.events.emit(WarningEvent(ErrorKind.SEEK_DISABLED, f"chunk {index} is not decoded"))
                return False
            self._index = index
            self._handle = decoded.open(offset)
            self._start_offset = 0.0
            self._tail = self._ramp = None
            self._waiting = False
            if self.status is PlaybackStatus.ENDED:
                self.status = PlaybackStatus.PAUSED
            return True

    def close(self) -> None:
        with self._lock:
            self._generation += 1
            self.status = PlaybackStatus.IDLE
            self._handle = None
        self.loader.close()

    # rendering ---------------------------------------------------------------

    def render(self, frames: int) -> np.ndarray:
        """Next ``frames`` frames of output as float32 ``(frames, channels)``."""
        out = np.zeros((max(0, frames), self.channels), dtype=np.float32)
        with self._lock:
            filled = 0
            while filled < frames and self.status is PlaybackStatus.PLAYING:
                if self._handle is None and not self._acquire():
                    break
                handle = self._handle
                available = self._handoff_frame(handle) - handle.frame
                if available <= 0:
                    self._hand_off()
                    continue
                block = _fit_channels(handle.read(min(frames - filled, available)), self.channels)
                if self._tail is not None:
                    block = self._mix_tail(block)
                out[filled : filled + len(block)] = block
                filled += len(block)
        return out

    def advance(self, seconds: float) -> float:
        """Consume ``seconds`` of playback without output; returns the new position."""
        rate = self.sample_rate or 0
        remaining = int(round(max(0.0, seconds) * rate))
        while remaining > 0:
            step = min(remaining, rate)
            self.render(step)
            remaining -= step
        return self.current_time

    def _handoff_frame(self, handle: AudioHandle) -> int:
        chunk = handle.chunk
        if self._index >= len(self.timeline) - 1:
            return chunk.frames
        return max(0, chunk.frames - int(round(self.epsilon * chunk.sample_rate)))

    def _hand_off(self) -> None:
        handle = self._handle
        tail = _fit_channels(handle.read(handle.chunk.frames), self.channels) if handle else None
        self._handle = None
        self._start_offset = 0.0
        self._index += 1
        if self._index >= len(self.timeline):
            self._finish()
            return
        if tail is not None and len(tail):
            ramp = np.linspace(0.0, 1.0, len(tail), endpoint=False, dtype=np.float32)[:, None]
            self._tail = tail * (1.0 - ramp)
            self._ramp = ramp
        self._health.append(self._buffer_health())
        self._prefetch()

    def _mix_tail(self, block: np.ndarray) -> np.ndarray:
        count = min(len(block), len(self._tail))
        mixed = block.copy()
        mixed[:count] = block[:count] * self._ramp[:count] + self._tail[:count]
        self._tail = self._tail[count:]
        self._ramp = self._ramp[count:]
        if not len(self._tail):
            self._tail = self._ramp = None
        return mixed

    def _acquire(self) -> bool:
        while self._index < len(self.timeline):
            entry = self.timeline[self._index]
            decoded = self.loader.get(entry)
            if decoded is not None:
                self._handle = decoded.open(self._start_offset)
                self._start_offset = 0.0
                if self._waiting:
                    self._waiting = False
                    LOGGER.info("Chunk %d arrived, resuming", entry.chunk_index)
                if self.sample_rate is None:
                    self.sample_rate = decoded.sample_rate
                if abs(decoded.duration - entry.duration) > 1e-3:
                    self.timeline = self.timeline.refine({entry.chunk_index: decoded.duration})
                return True
            if self.loader.has_failed(entry):
                self._warn_unavailable(entry, "fetch or decode failed")
                self._index += 1
                self._start_offset = 0.0
                self._tail = self._ramp = None
                continue
            self.loader.submit(entry)
            if not self._waiting:
                self._waiting = True
                self._tail = self._ramp = None
                self._health.append(0.0)
                PLAYBACK_GAPS.inc()
                LOGGER.info("Chunk %d not decoded at boundary, waiting", entry.chunk_index)
            return False
        self._finish()
        return False

    def _finish(self) -> None:
        self.status = PlaybackStatus.ENDED
        self._handle = None
        self._tail = self._ramp = None
        self._index = max(0, len(self.timeline) - 1)
        self._start_offset = self.timeline[self._index].duration
        LOGGER.info("Playback ended")
        self.events.emit(Ended(self.stream_id))

    def _prefetch(self) -> None:
        start = self._index + 1
        self.loader.prefetch(self.timeline.entries[start : start + self.lookahead])

    def _warn_unavailable(self, entry: ChunkTimelineEntry, reason: str) -> None:
        LOGGER.warning("Skipping chunk %d: %s", entry.chunk_index, reason)
        self.events.emit(WarningEvent(ErrorKind.PLAYBACK_UNAVAILABLE, f"chunk {entry.chunk_index} skipped: {reason}"))

    # observable state --------------------------------------------------------

    def _buffer_health(self) -> float:
        if self.timeline is None:
            return 0.0
        upcoming = range(self._index + 1, min(len(self.timeline), self._index + 1 + self.lookahead))
        if not len(upcoming):
            return 1.0
        return sum(1 for idx in upcoming if self.loader.is_loaded(self.timeline[idx])) / len(upcoming)

    @property
    def buffer_health(self) -> float:
        with self._lock:
            return self._buffer_health()

    @property
    def network_quality(self) -> NetworkQuality:
        with self._lock:
            samples = list(self._health) or [self._buffer_health()]
        score = sum(samples) / len(samples)
        if score >= 0.8:
            return NetworkQuality.EXCELLENT
        if score >= 0.5:
            return NetworkQuality.GOOD
        return NetworkQuality.POOR

    @property
    def cursor(self) -> PlaybackCursor:
        with self._lock:
            offset = self._handle.position if self._handle else self._start_offset
            return PlaybackCursor(self._index, offset, self.status is PlaybackStatus.PLAYING)

    @property
    def current_time(self) -> float:
        with self._lock:
            if self.timeline is None or not len(self.timeline):
                return 0.0
            if self.status is PlaybackStatus.ENDED:
                return self.timeline.total_duration
            cursor = self.cursor
            return self.timeline.to_global(cursor.current_chunk_index, cursor.current_offset)

    def state(self) -> PlayerState:
        with self._lock:
            total = len(self.timeline) if self.timeline else 0
            return PlayerState(
                is_playing=self.status is PlaybackStatus.PLAYING,
                current_chunk_index=self._index,
                total_chunks=total,
                current_time=self.current_time,
                total_duration=self.timeline.total_duration if self.timeline else 0.0,
                buffer_health=self._buffer_health(),
                network_quality=self.network_quality,
            )


__all__ = ["NetworkQuality", "PlaybackCursor", "PlaybackEngine", "PlaybackStatus", "PlayerState"]
