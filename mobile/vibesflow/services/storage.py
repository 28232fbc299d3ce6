"""Remote chunk writes and asynchronous storage confirmation."""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from pydantic import ValidationError

from ..audio.compression import CompressedAudio
from ..audio.types import Chunk, RemoteChunkRecord, StorageStatus
from ..errors import ErrorKind, PermanentRejectError, TransientIOError, VibesFlowError
from ..events import ErrorEvent, EventChannel, Progress
from ..metrics import CONFIRMATIONS
from ..schemas import StreamStatusResponse, UploadResponse
from .network import ApiClient

LOGGER = logging.getLogger("vibesflow.storage")


@dataclass(slots=True)
class _PollState:
    interval: float
    pending_responses: int = 0
    timer: Optional[threading.Timer] = None


class StorageClient:
    """Submits chunks and tracks each one until storage confirms or fails it.

    Every submitted chunk gets its own polling chain driven by
    ``threading.Timer``. The interval starts at ``poll_initial`` and is
    multiplied by ``poll_backoff`` after every ``poll_slow_after`` consecutive
    "still processing" answers, never exceeding ``poll_max``. Transport errors
    keep the current interval and retry until :meth:`close`.
    """

    def __init__(
        self,
        api: ApiClient,
        *,
        creator_id: str = "",
        min_chunk_bytes: int = 127,
        max_chunk_bytes: int = 10 * 1024 * 1024,
        poll_initial: float = 5.0,
        poll_max: float = 120.0,
        poll_backoff: float = 2.0,
        poll_slow_after: int = 3,
        poll: bool = True,
        events: Optional[EventChannel] = None,
    ) -> None:
        self.api = api
        self.creator_id = creator_id
        self.min_chunk_bytes = max(0, int(min_chunk_bytes))
        self.max_chunk_bytes = int(max_chunk_bytes)
        self.poll_initial = max(0.01, float(poll_initial))
        self.poll_max = max(self.poll_initial, float(poll_max))
        self.poll_backoff = max(1.0, float(poll_backoff))
        self.poll_slow_after = max(1, int(poll_slow_after))
        self.poll_enabled = poll
        self.events = events
        self._lock = threading.Lock()
        self._records: Dict[str, RemoteChunkRecord] = {}
        self._polls: Dict[str, _PollState] = {}
        self._closed = threading.Event()

    def check_available(self) -> bool:
        return self.api.test_connection()

    def submit(self, chunk: Chunk, payload: CompressedAudio, *, attempts: int = 1) -> RemoteChunkRecord:
        size = len(payload.data)
        final_marker = chunk.is_final and size == 0
        if size < self.min_chunk_bytes and not final_marker:
            raise PermanentRejectError(
                f"{chunk.chunk_id} is {size} bytes, below the {self.min_chunk_bytes} byte storage minimum"
            )
        if size > self.max_chunk_bytes:
            raise PermanentRejectError(f"{chunk.chunk_id} is {size} bytes, above the upload limit")

        form = {
            "chunk_id": chunk.chunk_id,
            "stream_id": chunk.stream_id,
            "creator_id": self.creator_id,
            "sequence": str(chunk.sequence),
            "window_start": f"{chunk.window_start:.3f}",
            "is_final": str(chunk.is_final).lower(),
            "participant_count": str(chunk.participant_count),
            "duration": f"{chunk.duration_seconds:.3f}",
            "audio_format": payload.format.lower(),
            "original_size": str(payload.original_size),
            "compressed_size": str(size),
        }
        files = None
        if not final_marker:
            files = {"file": (f"{chunk.chunk_id}.{payload.extension}", payload.data, payload.mime_type)}
        resp = self.api.request("POST", "/v1/chunks", data=form, files=files)
        try:
            answer = UploadResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise TransientIOError(f"Invalid upload response: {exc}") from exc
        if not answer.accepted:
            raise PermanentRejectError(answer.message or f"{chunk.chunk_id} rejected by storage")

        with self._lock:
            record = self._records.get(chunk.chunk_id)
            if record is None:
                record = RemoteChunkRecord(chunk_id=chunk.chunk_id, stream_id=chunk.stream_id)
                self._records[chunk.chunk_id] = record
            elif not record.status.terminal:
                record.status = StorageStatus.SUBMITTED
            record.upload_id = answer.upload_id
            record.attempts = attempts
            snapshot = dataclasses.replace(record)
        LOGGER.info("Chunk %s submitted (%d bytes, upload %s)", chunk.chunk_id, size, answer.upload_id or "-")
        if self.poll_enabled and not snapshot.status.terminal:
            self._schedule(chunk.chunk_id, self.poll_initial, reset=True)
        return snapshot

    def record(self, chunk_id: str) -> Optional[RemoteChunkRecord]:
        with self._lock:
            record = self._records.get(chunk_id)
            return dataclasses.replace(record) if record else None

    def records(self) -> List[RemoteChunkRecord]:
        with self._lock:
            return [dataclasses.replace(record) for record in self._records.values()]

    def pending_polls(self) -> int:
        with self._lock:
            return len(self._polls)

    def poll_once(self, chunk_id: str) -> StorageStatus:
        """Query the status endpoint once and apply the answer to the record."""
        with self._lock:
            record = self._records.get(chunk_id)
            if record is None:
                raise KeyError(chunk_id)
            stream_id = record.stream_id
        resp = self.api.request("GET", f"/v1/streams/{stream_id}/status", params={"chunk_id": chunk_id})
        try:
            status = StreamStatusResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise TransientIOError(f"Invalid status response: {exc}") from exc
        entry = status.find(chunk_id)

        with self._lock:
            record.polls += 1
            state = self._polls.get(chunk_id)
            if entry is None or not entry.status.terminal:
                if entry is not None:
                    record.status = entry.status
                if state is not None:
                    state.pending_responses += 1
                    if state.pending_responses % self.poll_slow_after == 0:
                        state.interval = min(self.poll_max, state.interval * self.poll_backoff)
                return record.status
            record.status = entry.status
            record.content_address = entry.content_address
            record.error = entry.error
            self._polls.pop(chunk_id, None)
            done = sum(1 for item in self._records.values() if item.status is StorageStatus.CONFIRMED)
            failed = sum(1 for item in self._records.values() if item.status is StorageStatus.FAILED)
            total = len(self._records)

        CONFIRMATIONS.labels(status=entry.status.value).inc()
        if entry.status is StorageStatus.CONFIRMED:
            LOGGER.info("Chunk %s confirmed at %s", chunk_id, entry.content_address)
        else:
            LOGGER.warning("Chunk %s failed in storage: %s", chunk_id, entry.error or "no reason given")
            if self.events:
                self.events.emit(
                    ErrorEvent(ErrorKind.PERMANENT_REJECT, entry.error or "storage rejected chunk", chunk_id)
                )
        if self.events:
            self.events.emit(Progress(stage="confirm", done=done, total=total, failed=failed))
        return entry.status

    def _schedule(self, chunk_id: str, delay: Optional[float] = None, *, reset: bool = False) -> None:
        with self._lock:
            if self._closed.is_set():
                return
            state = self._polls.get(chunk_id)
            if state is None or reset:
                if state and state.timer:
                    state.timer.cancel()
                state = _PollState(interval=self.poll_initial)
                self._polls[chunk_id] = state
            timer = threading.Timer(state.interval if delay is None else delay, self._poll_tick, args=(chunk_id,))
            timer.daemon = True
            state.timer = timer
        timer.start()

    def _poll_tick(self, chunk_id: str) -> None:
        if self._closed.is_set():
            return
        try:
            status = self.poll_once(chunk_id)
        except KeyError:
            return
        except VibesFlowError as exc:
            LOGGER.debug("Status poll for %s failed, retrying: %s", chunk_id, exc)
            self._schedule(chunk_id)
            return
        if not status.terminal:
            self._schedule(chunk_id)

    def close(self) -> None:
        """Cancel every outstanding poll."""
        self._closed.set()
        with self._lock:
            polls = list(self._polls.values())
            self._polls.clear()
        for state in polls:
            if state.timer:
                state.timer.cancel()
        if polls:
            LOGGER.info("Cancelled %d pending confirmation poll(s)", len(polls))


__all__ = ["StorageClient"]
