"""Pipeline tuning resolved from the environment."""

from __future__ import annotations

import os
from functools import lru_cache

from pydantic import BaseModel, Field


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


class PipelineConfig(BaseModel):
    # capture format (16-bit interleaved PCM)
    chunk_seconds: float = Field(default=_env_float("VIBESFLOW_CHUNK_SECONDS", 60.0))
    sample_rate: int = Field(default=_env_int("VIBESFLOW_SAMPLE_RATE", 48000))
    channels: int = Field(default=_env_int("VIBESFLOW_CHANNELS", 2))
    sample_width: int = Field(default=2)

    # activity monitor
    activity_base_window: float = Field(default=_env_float("VIBESFLOW_ACTIVITY_BASE_WINDOW", 2.0))
    quiet_bound: float = Field(default=_env_float("VIBESFLOW_QUIET_BOUND", 5.0))
    idle_bound: float = Field(default=_env_float("VIBESFLOW_IDLE_BOUND", 10.0))
    arrival_history: int = Field(default=_env_int("VIBESFLOW_ARRIVAL_HISTORY", 64))
    monitor_interval: float = Field(default=_env_float("VIBESFLOW_MONITOR_INTERVAL", 1.0))
    sustain_ticks: int = Field(default=_env_int("VIBESFLOW_SUSTAIN_TICKS", 3))
    deep_queue: int = Field(default=_env_int("VIBESFLOW_DEEP_QUEUE", 4))

    # uploads
    upload_workers: int = Field(default=_env_int("VIBESFLOW_UPLOAD_WORKERS", 2))
    max_upload_attempts: int = Field(default=_env_int("VIBESFLOW_MAX_UPLOAD_ATTEMPTS", 5))
    retry_base_delay: float = Field(default=_env_float("VIBESFLOW_RETRY_BASE_DELAY", 1.0))
    retry_max_delay: float = Field(default=_env_float("VIBESFLOW_RETRY_MAX_DELAY", 60.0))
    max_chunk_bytes: int = Field(default=_env_int("VIBESFLOW_MAX_CHUNK_BYTES", 10 * 1024 * 1024))
    min_chunk_bytes: int = Field(default=_env_int("VIBESFLOW_MIN_CHUNK_BYTES", 127))
    http_timeout: float = Field(default=_env_float("VIBESFLOW_HTTP_TIMEOUT", 15.0))
    spool_dir: str | None = Field(default=os.getenv("VIBESFLOW_SPOOL_DIR"))

    # confirmation polling
    poll_initial_seconds: float = Field(default=_env_float("VIBESFLOW_POLL_INITIAL", 5.0))
    poll_max_seconds: float = Field(default=_env_float("VIBESFLOW_POLL_MAX", 120.0))
    poll_backoff: float = Field(default=_env_float("VIBESFLOW_POLL_BACKOFF", 2.0))
    poll_slow_after: int = Field(default=_env_int("VIBESFLOW_POLL_SLOW_AFTER", 3))

    # playback
    preload_workers: int = Field(default=_env_int("VIBESFLOW_PRELOAD_WORKERS", 4))
    fetch_timeout: float = Field(default=_env_float("VIBESFLOW_FETCH_TIMEOUT", 20.0))
    lookahead_chunks: int = Field(default=_env_int("VIBESFLOW_LOOKAHEAD_CHUNKS", 3))
    boundary_epsilon: float = Field(default=_env_float("VIBESFLOW_BOUNDARY_EPSILON", 0.05))
    quality_window: int = Field(default=_env_int("VIBESFLOW_QUALITY_WINDOW", 20))

    # local files
    data_dir: str = Field(default=os.getenv("VIBESFLOW_DATA_DIR", os.path.expanduser("~/.vibesflow")))
    settings_file: str = Field(default="settings.json")
    log_level: str = Field(default=os.getenv("VIBESFLOW_LOG_LEVEL", "INFO"))
    log_file: str | None = Field(default=os.getenv("VIBESFLOW_LOG_FILE"))
    log_history: int = Field(default=200)

    @property
    def bytes_per_second(self) -> int:
        return self.sample_rate * self.channels * self.sample_width


@lru_cache()
def get_config() -> PipelineConfig:
    return PipelineConfig()


CONFIG = get_config()

__all__ = ["CONFIG", "PipelineConfig", "get_config"]
