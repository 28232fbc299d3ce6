"""Capture session: owns the producer pipeline from first sample to teardown."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from pathlib import Path
from typing import Callable, List, Optional

from .audio.activity import ActivityMonitor
from .audio.producer import ChunkProducer
from .audio.types import ActivityState, Chunk, RemoteChunkRecord, StreamSession
from .config import CONFIG, PipelineConfig
from .errors import ErrorKind, SessionInitError, VibesFlowError
from .events import EventChannel, WarningEvent
from .metrics import QUEUE_DEPTH
from .services.network import ApiClient
from .services.storage import StorageClient
from .services.uploader import UploadWorkerPool
from .store.queue_store import UploadQueue
from .store.settings_store import SettingsStore

LOGGER = logging.getLogger("vibesflow.session")


class CaptureSession:
    """Wire the activity monitor, producer, queue, workers and storage client.

    ``close()`` returns as soon as the final chunk is queued; uploads and
    confirmation polls keep running until :meth:`shutdown`, so the pipeline
    outlives whatever screen started it.
    """

    def __init__(
        self,
        settings: SettingsStore,
        *,
        config: PipelineConfig = CONFIG,
        stream_id: Optional[str] = None,
        api: Optional[ApiClient] = None,
        storage: Optional[StorageClient] = None,
        events: Optional[EventChannel] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.config = config
        self.events = events or EventChannel()
        self._clock = clock
        current = settings.get()
        self.session = StreamSession(
            stream_id=stream_id or f"rta_{uuid.uuid4().hex[:12]}",
            creator_id=current.creator_id,
            started_at=clock(),
            participant_count=max(1, current.participant_count),
        )
        self.api = api or ApiClient(settings, timeout=config.http_timeout)
        self.storage = storage or StorageClient(
            self.api,
            creator_id=current.creator_id,
            min_chunk_bytes=config.min_chunk_bytes,
            max_chunk_bytes=config.max_chunk_bytes,
            poll_initial=config.poll_initial_seconds,
            poll_max=config.poll_max_seconds,
            poll_backoff=config.poll_backoff,
            poll_slow_after=config.poll_slow_after,
            events=self.events,
        )
        self.monitor = ActivityMonitor(
            base_window=config.activity_base_window,
            quiet_bound=config.quiet_bound,
            idle_bound=config.idle_bound,
            history=config.arrival_history,
        )
        self.queue = UploadQueue(Path(config.spool_dir) if config.spool_dir else None)
        self.producer = ChunkProducer(
            self.session,
            self.queue,
            self.monitor,
            window_seconds=config.chunk_seconds,
            bytes_per_second=config.bytes_per_second,
            events=self.events,
            clock=clock,
        )
        self.workers = UploadWorkerPool(
            self.queue,
            self.storage,
            self.monitor.compression_level,
            sample_rate=config.sample_rate,
            channels=config.channels,
            workers=config.upload_workers,
            max_attempts=config.max_upload_attempts,
            retry_base_delay=config.retry_base_delay,
            retry_max_delay=config.retry_max_delay,
            events=self.events,
        )
        self._tick_stop = threading.Event()
        self._tick_thread: threading.Thread | None = None
        self._stall_reported = False
        self._started = False

    @property
    def stream_id(self) -> str:
        return self.session.stream_id

    @property
    def closed(self) -> bool:
        return self.session.closed

    def start(self) -> "CaptureSession":
        """Verify the backend and start capture. Raises SessionInitError."""
        if self._started:
            return self
        missing = self.settings.get().missing()
        if missing:
            raise SessionInitError(f"settings incomplete: {', '.join(missing)}")
        try:
            available = self.storage.check_available()
        except VibesFlowError as exc:
            raise SessionInitError(f"storage backend unreachable: {exc}") from exc
        if not available:
            raise SessionInitError("storage backend health check failed")
        recovered = self.queue.recover()
        if recovered:
            LOGGER.info("Resuming upload of %d chunk(s) from a previous run", len(recovered))
        self.workers.start()
        self.producer.start()
        self._tick_stop.clear()
        self._tick_thread = threading.Thread(target=self._tick_loop, name="activity-monitor", daemon=True)
        self._tick_thread.start()
        self._started = True
        LOGGER.info("Capture session %s started for %s", self.stream_id, self.session.creator_id)
        return self

    def add_sample(self, data: bytes) -> None:
        self.producer.add_sample(data)

    def update_participant_count(self, count: int) -> None:
        self.producer.update_participant_count(count)

    def tick(self) -> ActivityState:
        """One monitoring step: reclassify, then rewrite queued priorities."""
        state = self.monitor.tick()
        self.queue.rebalance(
            state,
            self.monitor.sustained_ticks,
            sustain_ticks=self.config.sustain_ticks,
            deep_queue=self.config.deep_queue,
        )
        QUEUE_DEPTH.set(len(self.queue))
        stalling = self.monitor.is_stalling()
        if stalling and not self._stall_reported and not self.closed:
            self.events.emit(WarningEvent(ErrorKind.CAPTURE_STALL, "live source stopped producing audio"))
        self._stall_reported = stalling
        return state

    def _tick_loop(self) -> None:
        while not self._tick_stop.wait(self.config.monitor_interval):
            try:
                self.tick()
            except Exception:
                LOGGER.exception("Activity monitor tick failed")

    def close(self) -> Optional[Chunk]:
        """Flush the final chunk, then mark the session closed."""
        chunk = self.producer.flush()
        if chunk is None:
            return None
        LOGGER.info("Session %s closed after %d chunk(s)", self.stream_id, self.session.sequence_counter)
        return chunk

    def abandon(self) -> None:
        self.producer.abandon()

    def wait_for_uploads(self, timeout: Optional[float] = None) -> bool:
        return self.queue.wait_empty(timeout)

    def records(self) -> List[RemoteChunkRecord]:
        return self.storage.records()

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        """Drain uploads (up to ``timeout``), then stop workers and polling."""
        if not self.session.closed and not self.session.abandoned:
            self.close()
        drained = self.queue.wait_empty(timeout) if self._started else True
        self._tick_stop.set()
        if self._tick_thread:
            self._tick_thread.join(timeout=2)
        self.workers.stop()
        self.queue.close()
        self.storage.close()
        self.api.close()
        if not drained:
            LOGGER.warning("Session %s shut down with %d chunk(s) unsent", self.stream_id, len(self.queue))
        return drained


__all__ = ["CaptureSession"]
