# hls_runner/encoding/progress.py
"""
Progress events emitted by the conversion pipelines.

Each pipeline yields an ordered stream of these frozen values and ends with
exactly one terminal event (completed or failed). Events are notifications;
aggregating them into a status is the caller's job.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple, Union

from hls_runner.encoding.errors import HLSError
from hls_runner.encoding.options import RenditionSpec
from hls_runner.encoding.tracks import SubtitleTrack

# =============================================================================
# VIDEO
# =============================================================================


@dataclass(frozen=True)
class Started:
    renditions: Tuple[RenditionSpec, ...] = ()
    encoder: str = ""
    kind: str = "started"


@dataclass(frozen=True)
class EncodingOutput:
    """One raw line of encoder output."""

    line: str
    rendition: RenditionSpec
    kind: str = "encoding_output"


@dataclass(frozen=True)
class RenditionProgress:
    """Fraction of the source duration encoded for one rendition, in [0, 1]."""

    fraction: float
    rendition: RenditionSpec
    kind: str = "rendition_progress"


@dataclass(frozen=True)
class Completed:
    variants: Tuple[RenditionSpec, ...]
    master_playlist: Path
    kind: str = "completed"


@dataclass(frozen=True)
class Failed:
    error: HLSError
    kind: str = "failed"


VideoEvent = Union[Started, EncodingOutput, RenditionProgress, Completed, Failed]

# =============================================================================
# THUMBNAILS
# =============================================================================


@dataclass(frozen=True)
class ThumbnailStarted:
    kind: str = "thumbnails_started"


@dataclass(frozen=True)
class ExtractingFrames:
    """Frame ``current`` (1-indexed) of ``total`` is being extracted."""

    current: int
    total: int
    kind: str = "extracting_frames"

    @property
    def fraction(self) -> float:
        return self.current / self.total if self.total else 0.0


@dataclass(frozen=True)
class AssemblingSprite:
    kind: str = "assembling_sprite"


@dataclass(frozen=True)
class WritingVTT:
    kind: str = "writing_vtt"


@dataclass(frozen=True)
class ThumbnailsCompleted:
    sprite_path: Path
    vtt_path: Path
    kind: str = "thumbnails_completed"


@dataclass(frozen=True)
class ThumbnailsFailed:
    error: HLSError
    kind: str = "thumbnails_failed"


ThumbnailEvent = Union[
    ThumbnailStarted,
    ExtractingFrames,
    AssemblingSprite,
    WritingVTT,
    ThumbnailsCompleted,
    ThumbnailsFailed,
]

# =============================================================================
# SUBTITLES
# =============================================================================


@dataclass(frozen=True)
class SubtitlesStarted:
    kind: str = "subtitles_started"


@dataclass(frozen=True)
class DetectingStreams:
    kind: str = "detecting_streams"


@dataclass(frozen=True)
class ExtractingTrack:
    track: SubtitleTrack
    current: int
    total: int
    kind: str = "extracting_track"


@dataclass(frozen=True)
class SegmentingTrack:
    track: SubtitleTrack
    kind: str = "segmenting_track"


@dataclass(frozen=True)
class WritingPlaylist:
    track: SubtitleTrack
    kind: str = "writing_playlist"


@dataclass(frozen=True)
class SubtitlesCompleted:
    tracks: Tuple[SubtitleTrack, ...]
    kind: str = "subtitles_completed"


@dataclass(frozen=True)
class SubtitlesFailed:
    error: HLSError
    kind: str = "subtitles_failed"


SubtitleEvent = Union[
    SubtitlesStarted,
    DetectingStreams,
    ExtractingTrack,
    SegmentingTrack,
    WritingPlaylist,
    SubtitlesCompleted,
    SubtitlesFailed,
]

TERMINAL_EVENTS = (
    Completed,
    Failed,
    ThumbnailsCompleted,
    ThumbnailsFailed,
    SubtitlesCompleted,
    SubtitlesFailed,
)


def is_terminal(event) -> bool:
    return isinstance(event, TERMINAL_EVENTS)


def collect(events) -> List:
    """Drain an event stream into a list (convenience for scripts and tests)."""
    return list(events)
