"""Encode raw PCM chunks before upload."""

from __future__ import annotations

import io
from dataclasses import dataclass

import numpy as np
import soundfile as sf

from ..errors import CompressionError
from .types import CompressionLevel

# (container, subtype, libsndfile compression level 0..1)
PROFILES = {
    CompressionLevel.LIGHT: ("FLAC", "PCM_16", 0.0),
    CompressionLevel.MEDIUM: ("OGG", "VORBIS", 0.4),
    CompressionLevel.HEAVY: ("OGG", "VORBIS", 0.8),
}

MIME_TYPES = {"FLAC": "audio/flac", "OGG": "audio/ogg"}
EXTENSIONS = {"FLAC": "flac", "OGG": "ogg"}


@dataclass(slots=True)
class CompressedAudio:
    data: bytes
    format: str
    original_size: int

    @property
    def mime_type(self) -> str:
        return MIME_TYPES.get(self.format, "application/octet-stream")

    @property
    def extension(self) -> str:
        return EXTENSIONS.get(self.format, "bin")

    @property
    def ratio(self) -> float:
        return len(self.data) / self.original_size if self.original_size else 1.0


def pcm_to_array(raw: bytes, channels: int) -> np.ndarray:
    """Interpret 16-bit little-endian interleaved PCM as a (frames, channels) array."""
    usable = len(raw) - (len(raw) % (2 * channels))
    samples = np.frombuffer(raw[:usable], dtype="<i2")
    return samples.reshape(-1, channels)


def compress_chunk(
    raw: bytes,
    level: CompressionLevel,
    *,
    sample_rate: int,
    channels: int,
) -> CompressedAudio:
    if not raw:
        return CompressedAudio(data=b"", format="PCM", original_size=0)
    container, subtype, quality = PROFILES[level]
    frames = pcm_to_array(raw, channels)
    if frames.size == 0:
        raise CompressionError(f"chunk shorter than one {channels}-channel frame")
    out = io.BytesIO()
    try:
        sf.write(
            out,
            frames,
            sample_rate,
            format=container,
            subtype=subtype,
            compression_level=quality,
        )
    except (RuntimeError, ValueError, TypeError) as exc:
        raise CompressionError(f"{container}/{subtype} encode failed: {exc}") from exc
    return CompressedAudio(data=out.getvalue(), format=container, original_size=len(raw))


__all__ = ["CompressedAudio", "PROFILES", "compress_chunk", "pcm_to_array"]
