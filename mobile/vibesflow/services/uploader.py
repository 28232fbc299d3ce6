"""Background workers that drain the upload queue."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional

from ..audio.compression import CompressedAudio, compress_chunk
from ..audio.types import CompressionLevel, UploadTask
from ..errors import ErrorKind, PermanentRejectError, VibesFlowError
from ..events import ErrorEvent, EventChannel
from ..metrics import COMPRESSION_RATIO, QUEUE_DEPTH, UPLOAD_ATTEMPTS, UPLOAD_LATENCY
from ..store.queue_store import UploadQueue
from .storage import StorageClient

LOGGER = logging.getLogger("vibesflow.uploader")

Compressor = Callable[[bytes, CompressionLevel], CompressedAudio]


class UploadWorkerPool:
    """Compress, submit and release; confirmation happens in the storage client."""

    def __init__(
        self,
        queue: UploadQueue,
        storage: StorageClient,
        level_for: Callable[[], CompressionLevel],
        *,
        sample_rate: int = 48000,
        channels: int = 2,
        workers: int = 2,
        max_attempts: int = 5,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 60.0,
        compressor: Optional[Compressor] = None,
        events: Optional[EventChannel] = None,
    ) -> None:
        self.queue = queue
        self.storage = storage
        self.level_for = level_for
        self.sample_rate = sample_rate
        self.channels = channels
        self.workers = max(1, int(workers))
        self.max_attempts = max(1, int(max_attempts))
        self.retry_base_delay = max(0.0, float(retry_base_delay))
        self.retry_max_delay = max(self.retry_base_delay, float(retry_max_delay))
        self.compressor = compressor or self._compress
        self.events = events
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []

    def start(self) -> None:
        if any(thread.is_alive() for thread in self._threads):
            return
        self._stop_event.clear()
        self._threads = [
            threading.Thread(target=self._run, name=f"upload-worker-{idx}", daemon=True)
            for idx in range(self.workers)
        ]
        for thread in self._threads:
            thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            task = self.queue.claim(timeout=0.5)
            if task is None:
                continue
            self.process(task)
            QUEUE_DEPTH.set(len(self.queue))

    def _compress(self, raw: bytes, level: CompressionLevel) -> CompressedAudio:
        return compress_chunk(raw, level, sample_rate=self.sample_rate, channels=self.channels)

    def process(self, task: UploadTask) -> bool:
        """Handle one claimed task. Returns True once the chunk is submitted."""
        chunk = task.chunk
        level = self.level_for()
        started = time.perf_counter()
        try:
            payload = self.compressor(chunk.raw_bytes, level)
            if payload.original_size:
                COMPRESSION_RATIO.labels(level=level.value).observe(payload.ratio)
            record = self.storage.submit(chunk, payload, attempts=task.attempts + 1)
        except PermanentRejectError as exc:
            UPLOAD_ATTEMPTS.labels(outcome="rejected").inc()
            task.attempts += 1
            task.last_error = str(exc)
            self.queue.drop(task, str(exc))
            self._report(ErrorKind.PERMANENT_REJECT, str(exc), task)
            return False
        except VibesFlowError as exc:
            UPLOAD_ATTEMPTS.labels(outcome="retry").inc()
            return self._retry(task, str(exc))
        except Exception as exc:  # compressor or transport bug; treat as transient
            LOGGER.exception("Unexpected failure uploading %s", chunk.chunk_id)
            UPLOAD_ATTEMPTS.labels(outcome="retry").inc()
            return self._retry(task, repr(exc))
        UPLOAD_ATTEMPTS.labels(outcome="submitted").inc()
        UPLOAD_LATENCY.observe(time.perf_counter() - started)
        task.attempts = record.attempts
        self.queue.complete(task)
        LOGGER.info(
            "Chunk %s uploaded after %d attempt(s) (%s, %d bytes)",
            chunk.chunk_id,
            record.attempts,
            level.value,
            len(payload.data),
        )
        return True

    def _retry(self, task: UploadTask, error: str) -> bool:
        task.attempts += 1
        task.last_error = error
        if task.attempts >= self.max_attempts:
            self.queue.drop(task, error)
            self._report(ErrorKind.TRANSIENT_IO, f"gave up after {task.attempts} attempts: {error}", task)
            return False
        delay = min(self.retry_max_delay, self.retry_base_delay * (2 ** (task.attempts - 1)))
        LOGGER.warning(
            "Upload of %s failed (attempt %d/%d), retrying in %.1fs: %s",
            task.chunk_id,
            task.attempts,
            self.max_attempts,
            delay,
            error,
        )
        self.queue.requeue(task, delay=delay)
        return False

    def _report(self, kind: ErrorKind, message: str, task: UploadTask) -> None:
        if task.chunk.is_final:
            LOGGER.error("Final chunk %s was not stored; session stays closed", task.chunk_id)
        if self.events:
            self.events.emit(ErrorEvent(kind, message, task.chunk_id))


__all__ = ["UploadWorkerPool"]
