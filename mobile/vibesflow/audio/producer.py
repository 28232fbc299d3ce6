"""Cuts the live buffer into fixed windows and hands chunks to the upload queue."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from ..events import ChunkReady, EventChannel
from ..metrics import CHUNKS_PRODUCED
from ..store.queue_store import UploadQueue
from .activity import ActivityMonitor
from .chunk_buffer import ChunkBuffer
from .types import Chunk, Priority, StreamSession, UploadTask

LOGGER = logging.getLogger("vibesflow.producer")


class ChunkProducer:
    def __init__(
        self,
        session: StreamSession,
        queue: UploadQueue,
        monitor: ActivityMonitor,
        *,
        window_seconds: float = 60.0,
        bytes_per_second: int = 48000 * 2 * 2,
        events: Optional[EventChannel] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.session = session
        self.queue = queue
        self.monitor = monitor
        self.window_seconds = float(window_seconds)
        self.bytes_per_second = max(1, int(bytes_per_second))
        self.events = events
        self._clock = clock
        self.buffer = ChunkBuffer(window_start=clock())
        self._rotate_lock = threading.Lock()
        self._intake_lock = threading.Lock()
        self._closing = False
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._final: Optional[Chunk] = None

    @property
    def closed(self) -> bool:
        return self.session.closed or self.session.abandoned

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="chunk-timer", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.window_seconds):
            try:
                self.rotate()
            except Exception:  # pragma: no cover - timer must keep running
                LOGGER.exception("Chunk rotation failed")

    def _stop_timer(self) -> None:
        self._stop.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=2)

    def add_sample(self, data: bytes) -> None:
        """Append live audio. Never performs I/O."""
        with self._intake_lock:
            if self._closing or self.closed:
                return
            self.buffer.append(data)
        self.monitor.record_arrival()

    def update_participant_count(self, count: int) -> None:
        if count > 0:
            self.session.participant_count = int(count)

    def rotate(self, is_final: bool = False) -> Optional[Chunk]:
        """Close the current window and enqueue it.

        Empty non-final windows are skipped without consuming a sequence
        number. A final rotate always produces a chunk, possibly zero-length.
        """
        with self._rotate_lock:
            if self._final is not None or self.session.abandoned:
                return None
            if is_final:
                # Samples accepted before this point are all in the final window.
                with self._intake_lock:
                    self._closing = True
            raw, window_start = self.buffer.snapshot_and_reset(self._clock())
            if not raw and not is_final:
                LOGGER.debug("Window empty; nothing to rotate")
                return None
            sequence = self.session.sequence_counter
            chunk = Chunk(
                chunk_id=Chunk.make_id(self.session.stream_id, sequence, window_start, is_final),
                stream_id=self.session.stream_id,
                sequence=sequence,
                window_start=window_start,
                raw_bytes=raw,
                is_final=is_final,
                duration_seconds=len(raw) / self.bytes_per_second,
                participant_count=self.session.participant_count,
            )
            priority = Priority.HIGH if is_final else self.monitor.upload_priority()
            self.queue.enqueue(UploadTask(chunk=chunk, priority=priority))
            self.session.sequence_counter = sequence + 1
            if is_final:
                self._final = chunk
        CHUNKS_PRODUCED.labels(final=str(is_final).lower()).inc()
        LOGGER.info(
            "Chunk %s queued (%.1fs, %d bytes, %s priority)",
            chunk.chunk_id,
            chunk.duration_seconds,
            chunk.size,
            priority.value,
        )
        if self.events:
            self.events.emit(ChunkReady(chunk.chunk_id, chunk.sequence, chunk.is_final, chunk.size))
        return chunk

    def flush(self) -> Optional[Chunk]:
        """Emit the final chunk and stop the window timer.

        Returns None for an abandoned session, which never gets a final chunk.
        """
        self._stop_timer()
        chunk = self.rotate(is_final=True) or self._final
        if chunk is not None:
            self.session.closed = True
        return chunk

    def abandon(self) -> int:
        """Stop capturing and discard whatever is buffered."""
        self._stop_timer()
        self.session.abandoned = True
        dropped = self.buffer.discard()
        LOGGER.info("Session %s abandoned; discarded %d buffered bytes", self.session.stream_id, dropped)
        return dropped


__all__ = ["ChunkProducer"]
