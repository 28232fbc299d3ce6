"""Error taxonomy shared by the capture and playback pipelines."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Stable identifiers carried by error and warning events."""

    TRANSIENT_IO = "transient_io"
    PERMANENT_REJECT = "permanent_reject"
    CAPTURE_STALL = "capture_stall"
    PLAYBACK_UNAVAILABLE = "playback_unavailable"
    SEEK_DISABLED = "seek_disabled"


class VibesFlowError(Exception):
    kind: Optional[ErrorKind] = None


class TransientIOError(VibesFlowError):
    """Network or storage temporarily unavailable; safe to retry."""

    kind = ErrorKind.TRANSIENT_IO


class PermanentRejectError(VibesFlowError):
    """The chunk was refused (locally or remotely) and must not be retried."""

    kind = ErrorKind.PERMANENT_REJECT


class CompressionError(VibesFlowError):
    kind = ErrorKind.TRANSIENT_IO


class PlaybackUnavailableError(VibesFlowError):
    """A chunk could not be fetched or decoded for playback."""

    kind = ErrorKind.PLAYBACK_UNAVAILABLE


class SessionInitError(VibesFlowError):
    """Capture session could not be created; surfaced to the caller."""


__all__ = [
    "CompressionError",
    "ErrorKind",
    "PermanentRejectError",
    "PlaybackUnavailableError",
    "SessionInitError",
    "TransientIOError",
    "VibesFlowError",
]
