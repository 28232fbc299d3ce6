from .decoder import AudioHandle, DecodedChunk, decode_chunk
from .engine import NetworkQuality, PlaybackCursor, PlaybackEngine, PlaybackStatus, PlayerState
from .preloader import ChunkLoader, Preloader
from .timeline import ChunkTimelineEntry, TimelineIndex, build_index

__all__ = [
    "AudioHandle",
    "ChunkLoader",
    "ChunkTimelineEntry",
    "DecodedChunk",
    "NetworkQuality",
    "PlaybackCursor",
    "PlaybackEngine",
    "PlaybackStatus",
    "PlayerState",
    "Preloader",
    "TimelineIndex",
    "build_index",
    "decode_chunk",
]
