"""Decode fetched chunks into float32 frames and read them through handles."""

from __future__ import annotations

import io
import threading
from dataclasses import dataclass

import numpy as np
import soundfile as sf

from ..errors import PlaybackUnavailableError


@dataclass(slots=True)
class DecodedChunk:
    samples: np.ndarray  # float32, shape (frames, channels)
    sample_rate: int

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def channels(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        return self.frames / float(self.sample_rate) if self.sample_rate else 0.0

    def open(self, offset: float = 0.0) -> "AudioHandle":
        handle = AudioHandle(self)
        handle.seek(offset)
        return handle


class AudioHandle:
    """Read cursor over one decoded chunk."""

    def __init__(self, chunk: DecodedChunk) -> None:
        self.chunk = chunk
        self._frame = 0
        self._lock = threading.Lock()

    @property
    def frame(self) -> int:
        return self._frame

    @property
    def position(self) -> float:
        return self._frame / float(self.chunk.sample_rate)

    @property
    def remaining(self) -> float:
        return max(0, self.chunk.frames - self._frame) / float(self.chunk.sample_rate)

    def seek(self, offset: float) -> None:
        frame = int(round(max(0.0, offset) * self.chunk.sample_rate))
        with self._lock:
            self._frame = min(frame, self.chunk.frames)

    def read(self, frames: int) -> np.ndarray:
        """Up to ``frames`` frames; shorter (possibly empty) at the end of the chunk."""
        with self._lock:
            start = self._frame
            stop = min(self.chunk.frames, start + max(0, frames))
            self._frame = stop
        return self.chunk.samples[start:stop]


def decode_chunk(data: bytes) -> DecodedChunk:
    """Decode any container libsndfile understands (FLAC, Ogg Vorbis, WAV)."""
    if not data:
        raise PlaybackUnavailableError("empty chunk payload")
    try:
        samples, sample_rate = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
    except (RuntimeError, ValueError, TypeError) as exc:
        raise PlaybackUnavailableError(f"Unable to decode chunk: {exc}") from exc
    return DecodedChunk(samples=np.ascontiguousarray(samples, dtype=np.float32), sample_rate=int(sample_rate))


__all__ = ["AudioHandle", "DecodedChunk", "decode_chunk"]
