"""Typed outbound events and the per-session channel that carries them."""

from __future__ import annotations

import queue
from dataclasses import dataclass
from typing import List, Optional, Union

from .errors import ErrorKind


@dataclass(frozen=True, slots=True)
class Progress:
    """Aggregate progress of a stage (``upload`` or ``preload``)."""

    stage: str
    done: int
    total: int
    failed: int = 0


@dataclass(frozen=True, slots=True)
class ChunkReady:
    chunk_id: str
    sequence: int
    is_final: bool
    size: int


@dataclass(frozen=True, slots=True)
class WarningEvent:
    kind: ErrorKind
    message: str
    chunk_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    kind: ErrorKind
    message: str
    chunk_id: Optional[str] = None
    fatal: bool = False


@dataclass(frozen=True, slots=True)
class Ended:
    stream_id: Optional[str] = None


Event = Union[Progress, ChunkReady, WarningEvent, ErrorEvent, Ended]


class EventChannel:
    """Single outbound event queue owned by a session or player."""

    def __init__(self, maxsize: int = 1024) -> None:
        self._queue: "queue.Queue[Event]" = queue.Queue(maxsize=maxsize)

    def emit(self, event: Event) -> None:
        # Drop the oldest event instead of blocking the emitter.
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    continue

    def get(self, timeout: float | None = None) -> Optional[Event]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[Event]:
        events: List[Event] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events


__all__ = ["ChunkReady", "Ended", "ErrorEvent", "Event", "EventChannel", "Progress", "WarningEvent"]
