# hls_runner/encoding/__init__.py
"""
HLS conversion pipelines.
Video renditions, seek-preview thumbnails and subtitle tracks, each driven
through ffmpeg and reported as a stream of progress events.
"""

from .encoders import EncoderProbe, available_encoders, select
from .errors import ErrorKind, HLSError
from .options import (
    LADDER,
    ConversionOptions,
    Encoder,
    ExternalSubtitle,
    RenditionSpec,
    SubtitleOptions,
    ThumbnailOptions,
    VideoCodecFamily,
)
from .playlist import finalize
from .probe import SourceInfo, probe_source
from .renditions import plan
from .subtitles import process
from .thumbnails import generate
from .toolchain import CancellationToken, Toolchain, resolve_toolchain
from .tracks import SubtitleTrack
from .transcoder import convert

__all__ = [
    "CancellationToken",
    "ConversionOptions",
    "Encoder",
    "EncoderProbe",
    "ErrorKind",
    "ExternalSubtitle",
    "HLSError",
    "LADDER",
    "RenditionSpec",
    "SourceInfo",
    "SubtitleOptions",
    "SubtitleTrack",
    "ThumbnailOptions",
    "Toolchain",
    "VideoCodecFamily",
    "available_encoders",
    "convert",
    "finalize",
    "generate",
    "plan",
    "probe_source",
    "process",
    "resolve_toolchain",
    "select",
]
