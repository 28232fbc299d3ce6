"""Dataclasses and enums shared across the capture pipeline."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ActivityState(str, Enum):
    ACTIVE = "active"
    QUIET = "quiet"
    IDLE = "idle"

    @property
    def level(self) -> int:
        return _ACTIVITY_ORDER.index(self)

    def step_towards(self, target: "ActivityState") -> "ActivityState":
        """Move at most one level towards ``target``."""
        if target.level > self.level:
            return _ACTIVITY_ORDER[self.level + 1]
        if target.level < self.level:
            return _ACTIVITY_ORDER[self.level - 1]
        return self


_ACTIVITY_ORDER = (ActivityState.ACTIVE, ActivityState.QUIET, ActivityState.IDLE)


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _PRIORITY_ORDER.index(self)

    def promoted(self) -> "Priority":
        return _PRIORITY_ORDER[min(self.rank + 1, len(_PRIORITY_ORDER) - 1)]

    def demoted(self) -> "Priority":
        return _PRIORITY_ORDER[max(self.rank - 1, 0)]


_PRIORITY_ORDER = (Priority.LOW, Priority.NORMAL, Priority.HIGH)


class CompressionLevel(str, Enum):
    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"


class StorageStatus(str, Enum):
    SUBMITTED = "submitted"
    QUEUED = "queued"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (StorageStatus.CONFIRMED, StorageStatus.FAILED)


@dataclass(slots=True)
class StreamSession:
    """One capture-to-close lifecycle."""

    stream_id: str
    creator_id: str
    started_at: float
    sequence_counter: int = 0
    participant_count: int = 1
    closed: bool = False
    abandoned: bool = False


@dataclass(slots=True)
class Chunk:
    chunk_id: str
    stream_id: str
    sequence: int
    window_start: float
    raw_bytes: bytes
    is_final: bool
    duration_seconds: float
    participant_count: int = 1

    @property
    def size(self) -> int:
        return len(self.raw_bytes)

    @staticmethod
    def make_id(stream_id: str, sequence: int, window_start: float, is_final: bool) -> str:
        suffix = "_final" if is_final else ""
        return f"{stream_id}_chunk_{sequence:03d}_{int(window_start * 1000)}{suffix}"


@dataclass(slots=True)
class UploadTask:
    """A chunk waiting in (or claimed from) the upload queue."""

    chunk: Chunk
    priority: Priority = Priority.NORMAL
    attempts: int = 0
    claimed: bool = False
    not_before: float = 0.0
    enqueued_at: float = field(default_factory=time.monotonic)
    last_error: Optional[str] = None

    @property
    def chunk_id(self) -> str:
        return self.chunk.chunk_id

    @property
    def sort_key(self) -> tuple[int, int]:
        return (-self.priority.rank, self.chunk.sequence)


@dataclass(slots=True)
class RemoteChunkRecord:
    chunk_id: str
    stream_id: str
    status: StorageStatus = StorageStatus.SUBMITTED
    content_address: Optional[str] = None
    upload_id: Optional[str] = None
    attempts: int = 1
    error: Optional[str] = None
    polls: int = 0


__all__ = [
    "ActivityState",
    "Chunk",
    "CompressionLevel",
    "Priority",
    "RemoteChunkRecord",
    "StorageStatus",
    "StreamSession",
    "UploadTask",
]
