"""Priority queue of chunks awaiting upload, with an optional disk spool."""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import asdict
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..audio.types import ActivityState, Chunk, Priority, UploadTask

LOGGER = logging.getLogger("vibesflow.queue")


class UploadQueue:
    """Shared queue between the chunk producer and the upload workers.

    Workers always claim the highest priority ready task; within a priority
    band the lowest sequence number wins. Priorities of queued tasks may be
    rewritten by :meth:`rebalance`; claimed tasks are never touched.
    """

    def __init__(self, spool_dir: Optional[Path] = None, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._cond = threading.Condition()
        self._queued: Dict[str, UploadTask] = {}
        self._in_flight: Dict[str, UploadTask] = {}
        self._known: set[str] = set()
        self._closed = False
        self.spool_dir = Path(spool_dir) if spool_dir else None
        if self.spool_dir:
            self.spool_dir.mkdir(parents=True, exist_ok=True)

    def enqueue(self, task: UploadTask) -> bool:
        """Add a new task. Returns False for a chunk id seen before."""
        with self._cond:
            if task.chunk_id in self._known:
                LOGGER.warning("Duplicate enqueue ignored for %s", task.chunk_id)
                return False
            self._known.add(task.chunk_id)
        # Spooled before it becomes claimable, so a finished task never leaves files behind.
        self._spool(task)
        with self._cond:
            task.claimed = False
            self._queued[task.chunk_id] = task
            self._cond.notify()
        return True

    def claim(self, timeout: Optional[float] = None) -> Optional[UploadTask]:
        """Take the best ready task, waiting up to ``timeout`` seconds."""
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while not self._closed:
                now = self._clock()
                ready = [task for task in self._queued.values() if task.not_before <= now]
                if ready:
                    task = min(ready, key=lambda item: item.sort_key)
                    del self._queued[task.chunk_id]
                    task.claimed = True
                    self._in_flight[task.chunk_id] = task
                    return task
                wait_for = None if deadline is None else deadline - now
                if wait_for is not None and wait_for <= 0:
                    return None
                if self._queued:
                    next_ready = min(task.not_before for task in self._queued.values()) - now
                    wait_for = next_ready if wait_for is None else min(wait_for, next_ready)
                self._cond.wait(timeout=wait_for)
            return None

    def requeue(self, task: UploadTask, delay: float = 0.0) -> None:
        """Put a claimed task back at the same priority after a failure."""
        with self._cond:
            self._in_flight.pop(task.chunk_id, None)
            task.claimed = False
            task.not_before = self._clock() + max(0.0, delay)
            self._queued[task.chunk_id] = task
            self._cond.notify_all()

    def complete(self, task: UploadTask) -> None:
        self._finish(task)

    def drop(self, task: UploadTask, reason: str) -> None:
        LOGGER.error("Dropping chunk %s after %d attempt(s): %s", task.chunk_id, task.attempts, reason)
        self._finish(task)

    def _finish(self, task: UploadTask) -> None:
        with self._cond:
            self._in_flight.pop(task.chunk_id, None)
            self._queued.pop(task.chunk_id, None)
            self._cond.notify_all()
        self._unspool(task.chunk_id)

    def rebalance(
        self,
        state: ActivityState,
        sustained_ticks: int,
        *,
        sustain_ticks: int = 3,
        deep_queue: int = 4,
    ) -> int:
        """Promote during sustained idle, demote during sustained activity.

        Moves every queued task by at most one priority band. Must only be
        called from the monitoring tick. Returns the number of tasks changed.
        """
        if sustained_ticks < sustain_ticks:
            return 0
        changed = 0
        with self._cond:
            if state is ActivityState.IDLE and self._queued:
                for task in self._queued.values():
                    promoted = task.priority.promoted()
                    if promoted is not task.priority:
                        task.priority = promoted
                        changed += 1
            elif state is ActivityState.ACTIVE and len(self._queued) >= deep_queue:
                for task in self._queued.values():
                    if task.chunk.is_final:
                        continue
                    demoted = task.priority.demoted()
                    if demoted is not task.priority:
                        task.priority = demoted
                        changed += 1
        if changed:
            LOGGER.debug("Rebalanced %d queued task(s) for %s source", changed, state.value)
        return changed

    def pending(self) -> List[UploadTask]:
        with self._cond:
            return sorted(self._queued.values(), key=lambda item: item.sort_key)

    @property
    def in_flight(self) -> int:
        with self._cond:
            return len(self._in_flight)

    def wait_empty(self, timeout: Optional[float] = None) -> bool:
        """Block until nothing is queued or in flight."""
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while self._queued or self._in_flight:
                remaining = None if deadline is None else deadline - self._clock()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(timeout=remaining if remaining is not None else 0.5)
            return True

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def __len__(self) -> int:
        with self._cond:
            return len(self._queued)

    def recover(self) -> List[Chunk]:
        """Re-enqueue chunks left in the spool by a previous process."""
        if not self.spool_dir:
            return []
        recovered: List[Chunk] = []
        for meta_path in sorted(self.spool_dir.glob("*.json")):
            try:
                meta = json.loads(meta_path.read_text(encoding="utf-8"))
                raw = (self.spool_dir / f"{meta_path.stem}.pcm").read_bytes()
            except (OSError, ValueError) as exc:
                LOGGER.warning("Unreadable spool entry %s: %s", meta_path.name, exc)
                continue
            priority = Priority(meta.pop("priority", Priority.NORMAL.value))
            attempts = int(meta.pop("attempts", 0))
            chunk = Chunk(raw_bytes=raw, **meta)
            task = UploadTask(chunk=chunk, priority=priority, attempts=attempts)
            with self._cond:
                if chunk.chunk_id in self._known:
                    continue
                self._known.add(chunk.chunk_id)
                self._queued[chunk.chunk_id] = task
                self._cond.notify()
            recovered.append(chunk)
        if recovered:
            LOGGER.info("Recovered %d spooled chunk(s)", len(recovered))
        return recovered

    def _spool(self, task: UploadTask) -> None:
        if not self.spool_dir:
            return
        meta = asdict(task.chunk)
        meta.pop("raw_bytes")
        meta["priority"] = task.priority.value
        meta["attempts"] = task.attempts
        try:
            (self.spool_dir / f"{task.chunk_id}.pcm").write_bytes(task.chunk.raw_bytes)
            (self.spool_dir / f"{task.chunk_id}.json").write_text(json.dumps(meta), encoding="utf-8")
        except OSError as exc:
            LOGGER.warning("Could not spool %s: %s", task.chunk_id, exc)

    def _unspool(self, chunk_id: str) -> None:
        if not self.spool_dir:
            return
        for suffix in (".json", ".pcm"):
            (self.spool_dir / f"{chunk_id}{suffix}").unlink(missing_ok=True)


__all__ = ["UploadQueue"]
