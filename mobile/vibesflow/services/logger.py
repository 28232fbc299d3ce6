"""Logging setup and an in-memory log tail for status displays."""

from __future__ import annotations

import logging
import logging.handlers
import queue
import threading
from collections import deque
from pathlib import Path
from typing import List, Optional

LOG_QUEUE: "queue.Queue[logging.LogRecord]" = queue.Queue()
QUEUE_LISTENER: Optional[logging.handlers.QueueListener] = None

FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str, log_file: Optional[str] = None, *, extra: Optional[List[logging.Handler]] = None) -> None:
    """Route the root logger through a queue so capture threads never block on I/O."""
    global QUEUE_LISTENER
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(FORMAT)

    handlers: List[logging.Handler] = []
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    for handler in extra or []:
        if handler.formatter is None:
            handler.setFormatter(formatter)
        handlers.append(handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(numeric_level)
    root_logger.addHandler(logging.handlers.QueueHandler(LOG_QUEUE))

    if QUEUE_LISTENER:
        QUEUE_LISTENER.stop()
    QUEUE_LISTENER = logging.handlers.QueueListener(LOG_QUEUE, *handlers, respect_handler_level=True)
    QUEUE_LISTENER.start()


class LogBuffer(logging.Handler):
    """Keeps the last ``limit`` log lines for display."""

    def __init__(self, limit: int = 200, level: int = logging.INFO) -> None:
        super().__init__(level=level)
        self._lines: deque[str] = deque(maxlen=max(1, limit))
        self._lines_lock = threading.Lock()
        self.setFormatter(logging.Formatter("%(asctime)s %(message)s", datefmt="%H:%M:%S"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.add(self.format(record))
        except Exception:  # pragma: no cover - logging must not raise
            self.handleError(record)

    def add(self, line: str) -> None:
        with self._lines_lock:
            self._lines.append(line)

    def get(self) -> List[str]:
        with self._lines_lock:
            return list(self._lines)


__all__ = ["LogBuffer", "configure_logging"]
