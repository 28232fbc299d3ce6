"""Append-only byte accumulator for one capture window."""

from __future__ import annotations

import threading
from typing import List


class ChunkBuffer:
    def __init__(self, window_start: float) -> None:
        self._parts: List[bytes] = []
        self._size = 0
        self._window_start = window_start
        self._lock = threading.Lock()

    def append(self, data: bytes) -> None:
        if not data:
            return
        with self._lock:
            self._parts.append(bytes(data))
            self._size += len(data)

    def snapshot_and_reset(self, window_start: float) -> tuple[bytes, float]:
        """Return the buffered bytes with their window start and open a new window."""
        with self._lock:
            parts, started = self._parts, self._window_start
            self._parts = []
            self._size = 0
            self._window_start = window_start
        return b"".join(parts), started

    def discard(self) -> int:
        with self._lock:
            dropped = self._size
            self._parts = []
            self._size = 0
        return dropped

    @property
    def window_start(self) -> float:
        with self._lock:
            return self._window_start

    def __len__(self) -> int:
        with self._lock:
            return self._size


__all__ = ["ChunkBuffer"]
