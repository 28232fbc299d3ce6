"""Tracks whether the live source is producing audio right now."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Optional

import numpy as np

from .types import ActivityState, CompressionLevel, Priority

UPLOAD_PRIORITY = {
    ActivityState.ACTIVE: Priority.LOW,
    ActivityState.QUIET: Priority.NORMAL,
    ActivityState.IDLE: Priority.HIGH,
}

COMPRESSION = {
    ActivityState.ACTIVE: CompressionLevel.LIGHT,
    ActivityState.QUIET: CompressionLevel.MEDIUM,
    ActivityState.IDLE: CompressionLevel.HEAVY,
}


class ActivityMonitor:
    """Classify the source as active, quiet or idle from sample arrival times.

    The active threshold adapts to the recent inter-arrival rhythm
    (mean + 2 standard deviations), clamped to ``[base_window, 2 * base_window]``.
    The reported state only moves one level per :meth:`tick`.
    """

    def __init__(
        self,
        *,
        base_window: float = 2.0,
        quiet_bound: float = 5.0,
        idle_bound: float = 10.0,
        history: int = 64,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base_window = max(0.001, float(base_window))
        self.quiet_bound = max(self.base_window, float(quiet_bound))
        self.idle_bound = max(self.quiet_bound, float(idle_bound))
        self._clock = clock
        self._arrivals: deque[float] = deque(maxlen=max(3, int(history)))
        self._lock = threading.Lock()
        self._state = ActivityState.QUIET
        self._sustained = 0

    def record_arrival(self, now: Optional[float] = None) -> None:
        stamp = self._clock() if now is None else now
        with self._lock:
            self._arrivals.append(stamp)

    def threshold(self) -> float:
        with self._lock:
            arrivals = np.fromiter(self._arrivals, dtype=np.float64)
        if arrivals.size < 3:
            return self.base_window
        gaps = np.diff(arrivals)
        value = float(gaps.mean() + 2.0 * gaps.std())
        return min(max(value, self.base_window), 2.0 * self.base_window)

    def silence(self, now: Optional[float] = None) -> Optional[float]:
        """Seconds since the last arrival, or None before the first sample."""
        now = self._clock() if now is None else now
        with self._lock:
            if not self._arrivals:
                return None
            last = self._arrivals[-1]
        return max(0.0, now - last)

    def classify(self, now: Optional[float] = None) -> ActivityState:
        gap = self.silence(now)
        if gap is None:
            return ActivityState.IDLE
        if gap < self.threshold():
            return ActivityState.ACTIVE
        if gap <= self.idle_bound:
            return ActivityState.QUIET
        return ActivityState.IDLE

    def is_stalling(self, now: Optional[float] = None) -> bool:
        gap = self.silence(now)
        return gap is not None and gap > self.quiet_bound

    def tick(self, now: Optional[float] = None) -> ActivityState:
        target = self.classify(now)
        with self._lock:
            new_state = self._state.step_towards(target)
            if new_state is self._state:
                self._sustained += 1
            else:
                self._state = new_state
                self._sustained = 1
            return self._state

    @property
    def state(self) -> ActivityState:
        with self._lock:
            return self._state

    @property
    def sustained_ticks(self) -> int:
        with self._lock:
            return self._sustained

    def upload_priority(self) -> Priority:
        return UPLOAD_PRIORITY[self.state]

    def compression_level(self) -> CompressionLevel:
        return COMPRESSION[self.state]


__all__ = ["ActivityMonitor", "COMPRESSION", "UPLOAD_PRIORITY"]
