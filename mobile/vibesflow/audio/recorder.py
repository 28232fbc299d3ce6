"""Live audio sources that feed a capture session."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Optional

import numpy as np
import soundfile as sf

from ..config import CONFIG
from ..services.logger import LogBuffer

LOGGER = logging.getLogger("vibesflow.recorder")

SampleSink = Callable[[bytes], None]


def to_pcm16(frames: np.ndarray, channels: int) -> bytes:
    """Interleaved 16-bit little-endian bytes with exactly ``channels`` channels."""
    if frames.ndim == 1:
        frames = frames[:, None]
    if frames.shape[1] != channels:
        if frames.shape[1] == 1:
            frames = np.repeat(frames, channels, axis=1)
        else:
            frames = frames[:, :channels]
    if frames.dtype != np.int16:
        frames = np.clip(frames, -1.0, 1.0)
        frames = (frames * 32767.0).astype(np.int16)
    return frames.astype("<i2", copy=False).tobytes()


class MicrophoneRecorder:
    """Streams the default input device into ``on_samples`` via sounddevice."""

    def __init__(
        self,
        on_samples: SampleSink,
        *,
        logger: Optional[LogBuffer] = None,
        level_callback: Callable[[float], None] | None = None,
        sample_rate: int = CONFIG.sample_rate,
        channels: int = CONFIG.channels,
        blocksize: int = 4800,
    ) -> None:
        self.on_samples = on_samples
        self.logger = logger
        self.level_callback = level_callback
        self.sample_rate = sample_rate
        self.channels = channels
        self.blocksize = blocksize
        self._sd = self._try_import_sounddevice()
        self._stream = None

    def _try_import_sounddevice(self):
        try:
            import sounddevice as sd  # type: ignore

            return sd
        except Exception:
            return None

    @property
    def available(self) -> bool:
        return self._sd is not None

    def _note(self, message: str) -> None:
        LOGGER.info(message)
        if self.logger:
            self.logger.add(message)

    def _callback(self, indata, frames, time_info, status) -> None:  # noqa: ARG002
        if status:
            LOGGER.debug("Input stream status: %s", status)
        pcm = np.array(indata, dtype=np.int16)
        self.on_samples(to_pcm16(pcm, self.channels))
        self._report_level(pcm)

    def _report_level(self, pcm: np.ndarray) -> None:
        if not self.level_callback or not pcm.size:
            return
        level = float(np.max(np.abs(pcm))) / 32768.0
        self.level_callback(max(0.0, min(1.0, level)))

    def start(self) -> None:
        if self._stream is not None:
            return
        if self._sd is None:
            raise RuntimeError("sounddevice is not installed; live capture unavailable")
        self._stream = self._sd.InputStream(
            samplerate=self.sample_rate,
            channels=self.channels,
            dtype="int16",
            blocksize=self.blocksize,
            callback=self._callback,
        )
        self._stream.start()
        self._note("Recording started")

    def stop(self) -> None:
        if self._stream is None:
            return
        self._stream.stop()
        self._stream.close()
        self._stream = None
        self._note("Recording stopped")


class FileSource:
    """Replays an audio file as if it were a live source."""

    def __init__(
        self,
        path: Path,
        on_samples: SampleSink,
        *,
        sample_rate: int = CONFIG.sample_rate,
        channels: int = CONFIG.channels,
        block_seconds: float = 0.1,
        realtime: bool = True,
    ) -> None:
        self.path = Path(path)
        self.on_samples = on_samples
        self.sample_rate = sample_rate
        self.channels = channels
        self.block_seconds = block_seconds
        self.realtime = realtime
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.finished = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        info = sf.info(str(self.path))
        if info.samplerate != self.sample_rate:
            raise ValueError(f"{self.path} is {info.samplerate} Hz, capture expects {self.sample_rate} Hz")
        self._stop.clear()
        self.finished.clear()
        self._thread = threading.Thread(target=self._loop, name="file-source", daemon=True)
        self._thread.start()

    def run(self) -> int:
        """Feed the whole file synchronously; returns the number of frames sent."""
        sent = 0
        blocksize = max(1, int(self.sample_rate * self.block_seconds))
        for block in sf.blocks(str(self.path), blocksize=blocksize, dtype="int16", always_2d=True):
            if self._stop.is_set():
                break
            self.on_samples(to_pcm16(block, self.channels))
            sent += len(block)
            if self.realtime:
                time.sleep(len(block) / float(self.sample_rate))
        return sent

    def _loop(self) -> None:
        try:
            frames = self.run()
            LOGGER.info("File source %s finished after %.1fs", self.path.name, frames / float(self.sample_rate))
        finally:
            self.finished.set()

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=2)


__all__ = ["FileSource", "MicrophoneRecorder", "to_pcm16"]
