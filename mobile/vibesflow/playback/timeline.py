"""Map a global stream position onto independently stored chunks."""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Tuple

from ..errors import PlaybackUnavailableError
from ..schemas import ChunkDescriptor


@dataclass(frozen=True, slots=True)
class ChunkTimelineEntry:
    chunk_index: int
    start_time: float
    end_time: float
    duration: float
    source_url: str


class TimelineIndex:
    """Ordered, contiguous chunk entries forming one virtual timeline."""

    def __init__(self, entries: Iterable[ChunkTimelineEntry], *, epsilon: float = 0.05) -> None:
        self.entries: Tuple[ChunkTimelineEntry, ...] = tuple(entries)
        self.epsilon = epsilon
        self._starts: List[float] = [entry.start_time for entry in self.entries]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def __getitem__(self, index: int) -> ChunkTimelineEntry:
        return self.entries[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TimelineIndex):
            return NotImplemented
        return self.entries == other.entries

    @property
    def total_duration(self) -> float:
        return self.entries[-1].end_time if self.entries else 0.0

    def locate(self, t: float) -> Tuple[int, float]:
        """Return ``(chunk_index, offset)`` for global time ``t``, clamped to the stream."""
        if not self.entries:
            raise PlaybackUnavailableError("timeline is empty")
        if t < 0:
            return 0, 0.0
        if t >= self.total_duration:
            last = next((entry for entry in reversed(self.entries) if entry.duration > 0), self.entries[-1])
            return last.chunk_index, max(0.0, last.duration - self.epsilon)
        position = bisect.bisect_right(self._starts, t) - 1
        entry = self.entries[max(0, position)]
        return entry.chunk_index, t - entry.start_time

    def to_global(self, chunk_index: int, offset: float) -> float:
        if not 0 <= chunk_index < len(self.entries):
            raise IndexError(chunk_index)
        entry = self.entries[chunk_index]
        return entry.start_time + min(max(0.0, offset), entry.duration)

    def refine(self, durations: Mapping[int, float]) -> "TimelineIndex":
        """New index with decoded durations substituted for reported ones."""
        if not durations:
            return self
        spans = [
            (entry.source_url, float(durations.get(entry.chunk_index, entry.duration)))
            for entry in self.entries
        ]
        return TimelineIndex(_accumulate(spans), epsilon=self.epsilon)


def _accumulate(spans: Iterable[Tuple[str, float]]) -> List[ChunkTimelineEntry]:
    entries: List[ChunkTimelineEntry] = []
    cursor = 0.0
    for index, (url, duration) in enumerate(spans):
        duration = max(0.0, duration)
        entries.append(ChunkTimelineEntry(index, cursor, cursor + duration, duration, url))
        cursor += duration
    return entries


def build_index(descriptors: Iterable[ChunkDescriptor], *, epsilon: float = 0.05) -> TimelineIndex:
    """Sort descriptors by sequence and lay them end to end.

    Duplicate sequence numbers keep the first descriptor seen. A zero-length
    final marker carries no audio and is left out. Building twice from the
    same descriptors yields equal indexes.
    """
    by_sequence: Dict[int, ChunkDescriptor] = {}
    for item in descriptors:
        if item.is_final and item.duration == 0:
            continue
        by_sequence.setdefault(item.sequence, item)
    ordered = [by_sequence[key] for key in sorted(by_sequence)]
    return TimelineIndex(_accumulate((item.url, item.duration) for item in ordered), epsilon=epsilon)


__all__ = ["ChunkTimelineEntry", "TimelineIndex", "build_index"]
