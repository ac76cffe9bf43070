# hls_runner/encoding/errors.py
"""
Error taxonomy for the conversion pipelines.

Every failure surfaced by a pipeline is an ``HLSError`` carrying an
``ErrorKind`` so callers can tell a cancellation apart from a genuine
failure and render an appropriate message.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Kinds of pipeline failure."""

    ENGINE_NOT_FOUND = "engine_not_found"
    INVALID_SOURCE_METADATA = "invalid_source_metadata"
    INSUFFICIENT_DURATION = "insufficient_duration"
    SUBPROCESS_FAILED = "subprocess_failed"
    CANCELLED = "cancelled"
    NO_ELIGIBLE_RENDITION = "no_eligible_rendition"
    PLAYLIST_ASSEMBLY_FAILED = "playlist_assembly_failed"


class HLSError(Exception):
    """
    Base class for pipeline errors.

    Attributes:
        kind: Error category
        message: Human-readable message
        details: Optional diagnostic text (e.g. captured ffmpeg output)
    """

    kind: ErrorKind = ErrorKind.SUBPROCESS_FAILED
    default_message = "Conversion failed."

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def as_dict(self) -> Dict[str, Any]:
        """Return a JSON-serializable representation of the error."""
        return {"kind": self.kind.value, "message": self.message, "details": self.details}


class EngineNotFoundError(HLSError):
    kind = ErrorKind.ENGINE_NOT_FOUND
    default_message = (
        "ffmpeg executable not found. Please install ffmpeg and ensure it is in your PATH."
    )


class InvalidSourceError(HLSError):
    kind = ErrorKind.INVALID_SOURCE_METADATA
    default_message = "Unable to determine resolution or duration of input file."


class InsufficientDurationError(HLSError):
    kind = ErrorKind.INSUFFICIENT_DURATION
    default_message = "Video is shorter than the thumbnail interval."


class SubprocessFailedError(HLSError):
    """A toolchain invocation exited with a non-zero status."""

    kind = ErrorKind.SUBPROCESS_FAILED
    default_message = "ffmpeg execution failed."

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[str] = None,
        returncode: Optional[int] = None,
    ):
        super().__init__(message, details)
        self.returncode = returncode

    def as_dict(self) -> Dict[str, Any]:
        data = super().as_dict()
        data["returncode"] = self.returncode
        return data


class ConversionCancelled(HLSError):
    kind = ErrorKind.CANCELLED
    default_message = "ffmpeg execution was cancelled."


class NoEligibleRenditionError(HLSError):
    kind = ErrorKind.NO_ELIGIBLE_RENDITION
    default_message = "No rendition is available for the source resolution."


class PlaylistAssemblyError(HLSError):
    kind = ErrorKind.PLAYLIST_ASSEMBLY_FAILED
    default_message = "Cannot write a master playlist without variant streams."


def as_hls_error(exc: BaseException) -> HLSError:
    """Wrap an unexpected exception so it can travel in a failed event."""
    if isinstance(exc, HLSError):
        return exc
    return SubprocessFailedError(f"Unexpected error: {exc}")
