"""Prometheus metrics for the capture and playback pipelines."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

CHUNKS_PRODUCED = Counter(
    "vibesflow_chunks_produced_total",
    "Chunks cut from the live buffer",
    labelnames=("final",),
)

UPLOAD_ATTEMPTS = Counter(
    "vibesflow_upload_attempts_total",
    "Chunk upload attempts by outcome",
    labelnames=("outcome",),
)

UPLOAD_LATENCY = Histogram(
    "vibesflow_upload_seconds",
    "Time spent compressing and submitting one chunk",
)

COMPRESSION_RATIO = Histogram(
    "vibesflow_compression_ratio",
    "Compressed size divided by raw size",
    labelnames=("level",),
    buckets=(0.05, 0.1, 0.2, 0.3, 0.5, 0.7, 1.0),
)

CONFIRMATIONS = Counter(
    "vibesflow_confirmations_total",
    "Terminal confirmation poll results",
    labelnames=("status",),
)

QUEUE_DEPTH = Gauge(
    "vibesflow_upload_queue_depth",
    "Tasks waiting in the upload queue",
)

CHUNK_FETCHES = Counter(
    "vibesflow_chunk_fetches_total",
    "Playback chunk fetches by outcome",
    labelnames=("outcome",),
)

PLAYBACK_GAPS = Counter(
    "vibesflow_playback_gaps_total",
    "Chunk boundaries reached before the next chunk was decoded",
)

__all__ = [
    "CHUNKS_PRODUCED",
    "CHUNK_FETCHES",
    "COMPRESSION_RATIO",
    "CONFIRMATIONS",
    "PLAYBACK_GAPS",
    "QUEUE_DEPTH",
    "UPLOAD_ATTEMPTS",
    "UPLOAD_LATENCY",
]
