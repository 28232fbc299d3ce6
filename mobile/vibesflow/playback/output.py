"""Drive a PlaybackEngine from a sound card or a plain clock."""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

from ..errors import PlaybackUnavailableError
from .engine import PlaybackEngine, PlaybackStatus

LOGGER = logging.getLogger("vibesflow.output")


def _try_import_sounddevice():
    try:
        import sounddevice as sd  # type: ignore

        return sd
    except Exception:
        return None


class DeviceOutput:
    """Pull rendered frames into a sounddevice ``OutputStream`` callback."""

    def __init__(self, engine: PlaybackEngine, *, blocksize: int = 1024, device: Optional[str] = None) -> None:
        self.engine = engine
        self.blocksize = blocksize
        self.device = device
        self._sd = _try_import_sounddevice()
        self._stream = None

    @property
    def available(self) -> bool:
        return self._sd is not None

    def _callback(self, outdata, frames, time_info, status) -> None:  # noqa: ARG002
        if status:
            LOGGER.debug("Output stream status: %s", status)
        outdata[:] = self.engine.render(frames)

    def start(self) -> None:
        if self._sd is None:
            raise PlaybackUnavailableError("sounddevice is not installed")
        if self.engine.sample_rate is None:
            raise PlaybackUnavailableError("engine has no decoded audio yet")
        self._stream = self._sd.OutputStream(
            samplerate=self.engine.sample_rate,
            channels=self.engine.channels,
            dtype="float32",
            blocksize=self.blocksize,
            device=self.device,
            callback=self._callback,
        )
        self._stream.start()

    def stop(self) -> None:
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None


class ClockDriver:
    """Advance the engine in real time without audio, for headless playback."""

    def __init__(self, engine: PlaybackEngine, *, interval: float = 0.1) -> None:
        self.engine = engine
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="playback-clock", daemon=True)
        self._thread.start()

    def _loop(self) -> None:
        last = time.monotonic()
        while not self._stop.wait(self.interval):
            now = time.monotonic()
            self.engine.advance(now - last)
            last = now
            if self.engine.status is PlaybackStatus.ENDED:
                return

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=2)


__all__ = ["ClockDriver", "DeviceOutput"]
