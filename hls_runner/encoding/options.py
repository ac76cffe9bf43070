# hls_runner/encoding/options.py
"""
Immutable configuration values for one conversion.

The rendition ladder, the encoder/preset enumerations and the option
snapshots consumed by the pipelines. A conversion reads exactly one
``ConversionOptions`` instance built by its caller; nothing here is mutated
once a conversion has started.
"""

import os
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional, Tuple

# =============================================================================
# RENDITION LADDER
# =============================================================================


@dataclass(frozen=True)
class RenditionSpec:
    """One rung of the bitrate ladder."""

    width: int
    height: int
    bitrate_kbps: int

    @property
    def name(self) -> str:
        return LADDER_NAMES.get((self.width, self.height), f"{self.height}p")

    @property
    def variant_filename(self) -> str:
        return f"variant_{self.height}p.m3u8"

    @property
    def segment_pattern(self) -> str:
        return f"segment_{self.height}p_%03d.ts"

    @property
    def bandwidth(self) -> int:
        """Bandwidth advertised in the master playlist, in bits per second."""
        return self.bitrate_kbps * 1000

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


RESOLUTION_4K = RenditionSpec(3840, 2160, 10000)
RESOLUTION_2K = RenditionSpec(2560, 1440, 5000)
RESOLUTION_1080P = RenditionSpec(1920, 1080, 3000)
RESOLUTION_720P = RenditionSpec(1280, 720, 1500)
RESOLUTION_480P = RenditionSpec(854, 480, 800)
RESOLUTION_240P = RenditionSpec(426, 240, 400)

# Highest to lowest
LADDER: Tuple[RenditionSpec, ...] = (
    RESOLUTION_4K,
    RESOLUTION_2K,
    RESOLUTION_1080P,
    RESOLUTION_720P,
    RESOLUTION_480P,
    RESOLUTION_240P,
)

LADDER_NAMES: Dict[Tuple[int, int], str] = {
    (3840, 2160): "4k",
    (2560, 1440): "2k",
    (1920, 1080): "1080p",
    (1280, 720): "720p",
    (854, 480): "480p",
    (426, 240): "240p",
}


def rendition_by_name(name: str) -> RenditionSpec:
    """
    Look up a ladder entry by its short name ("1080p", "4k", ...).

    Raises:
        ValueError: If the name is not part of the ladder
    """
    normalized = (name or "").strip().lower()
    for spec in LADDER:
        if spec.name == normalized:
            return spec
    raise ValueError(f"Unknown rendition: {name}")


def rendition_by_width(width: int) -> Optional[RenditionSpec]:
    for spec in LADDER:
        if spec.width == width:
            return spec
    return None


# =============================================================================
# ENCODING PARAMETERS
# =============================================================================


class VideoCodecFamily(str, Enum):
    H264 = "h264"
    H265 = "h265"

    @property
    def display_name(self) -> str:
        return "H.264" if self is VideoCodecFamily.H264 else "H.265"


class Encoder(str, Enum):
    """Video encoders known to the selector, valued by their ffmpeg name."""

    H264_SOFTWARE = "libx264"
    H264_VIDEOTOOLBOX = "h264_videotoolbox"
    H264_QSV = "h264_qsv"
    H265_SOFTWARE = "libx265"
    H265_VIDEOTOOLBOX = "hevc_videotoolbox"
    H265_QSV = "hevc_qsv"

    @property
    def family(self) -> VideoCodecFamily:
        if self in (Encoder.H265_SOFTWARE, Encoder.H265_VIDEOTOOLBOX, Encoder.H265_QSV):
            return VideoCodecFamily.H265
        return VideoCodecFamily.H264

    @property
    def is_hardware(self) -> bool:
        return self not in (Encoder.H264_SOFTWARE, Encoder.H265_SOFTWARE)

    @property
    def display_name(self) -> str:
        kind = {
            Encoder.H264_SOFTWARE: "Software Renderer",
            Encoder.H265_SOFTWARE: "Software Renderer",
            Encoder.H264_VIDEOTOOLBOX: "Hardware Accelerated",
            Encoder.H265_VIDEOTOOLBOX: "Hardware Accelerated",
            Encoder.H264_QSV: "QuickSync",
            Encoder.H265_QSV: "QuickSync",
        }[self]
        return f"{self.family.display_name} {kind}"


class SpeedPreset(str, Enum):
    """x264/x265 speed presets, fastest first."""

    ULTRAFAST = "ultrafast"
    SUPERFAST = "superfast"
    VERYFAST = "veryfast"
    FASTER = "faster"
    FAST = "fast"
    MEDIUM = "medium"
    SLOW = "slow"
    SLOWER = "slower"
    VERYSLOW = "veryslow"


class QualityPreset(str, Enum):
    """Quality presets mapped to a CRF value per codec family."""

    HIGH = "high"
    BALANCED = "balanced"
    EFFICIENT = "efficient"

    def crf(self, family: VideoCodecFamily) -> int:
        # Lower CRF = higher quality, larger files
        table = {
            VideoCodecFamily.H264: {"high": 18, "balanced": 23, "efficient": 28},
            VideoCodecFamily.H265: {"high": 24, "balanced": 28, "efficient": 32},
        }
        return table[family][self.value]


class AudioCodec(str, Enum):
    AAC = "aac"
    OPUS = "libopus"
    MP3 = "libmp3lame"


class AudioBitrate(str, Enum):
    BITRATE_96K = "96k"
    BITRATE_128K = "128k"
    BITRATE_192K = "192k"
    BITRATE_256K = "256k"
    BITRATE_320K = "320k"


# =============================================================================
# THUMBNAILS
# =============================================================================


class ThumbnailFormat(str, Enum):
    JPEG = "jpeg"
    WEBP = "webp"

    @property
    def extension(self) -> str:
        return "jpg" if self is ThumbnailFormat.JPEG else "webp"

    @property
    def quality_args(self) -> Tuple[str, ...]:
        if self is ThumbnailFormat.JPEG:
            return ("-q:v", "2")
        return ("-quality", "80")


# Preset widths (px) and intervals (s)
THUMBNAIL_SIZE_PRESETS: Dict[str, int] = {"small": 160, "medium": 320, "large": 480}
THUMBNAIL_INTERVAL_PRESETS: Dict[str, float] = {"frequent": 5, "standard": 10, "sparse": 30}


@dataclass(frozen=True)
class ThumbnailOptions:
    """
    Seek-preview thumbnail settings.

    Attributes:
        enabled: Whether thumbnails are generated at all
        interval: Seconds between two sampled frames
        width: Thumbnail width in pixels (height follows the source aspect ratio)
        format: Sprite image format
        columns: Sprite grid column count
        concurrent: Run alongside video encoding instead of after it
    """

    enabled: bool = False
    interval: float = 10
    width: int = 320
    format: ThumbnailFormat = ThumbnailFormat.JPEG
    columns: int = 10
    concurrent: bool = True

    def __post_init__(self):
        if self.interval <= 0:
            raise ValueError("Thumbnail interval must be positive")
        if self.width <= 0:
            raise ValueError("Thumbnail width must be positive")
        if self.columns < 1:
            raise ValueError("Sprite column count must be at least 1")


# =============================================================================
# SUBTITLES
# =============================================================================


class SubtitleFormat(str, Enum):
    SRT = "srt"
    VTT = "vtt"
    ASS = "ass"
    SSA = "ssa"

    @classmethod
    def from_path(cls, path: str) -> Optional["SubtitleFormat"]:
        ext = os.path.splitext(path)[1].lstrip(".").lower()
        try:
            return cls(ext)
        except ValueError:
            return None


@dataclass(frozen=True)
class ExternalSubtitle:
    """A user-supplied subtitle file."""

    path: str
    language: str
    name: Optional[str] = None
    forced: bool = False


@dataclass(frozen=True)
class SubtitleOptions:
    enabled: bool = False
    extract_embedded: bool = True
    external_files: Tuple[ExternalSubtitle, ...] = ()
    default_language: Optional[str] = None
    concurrent: bool = True


# =============================================================================
# CONVERSION SNAPSHOT
# =============================================================================


@dataclass(frozen=True)
class ConversionOptions:
    """
    Immutable settings for one conversion.

    Attributes:
        encoder: Encoder override, used as-is when set
        codec_family: Requested video codec family
        speed_preset: Encoder speed preset
        quality_preset: Quality preset, mapped to CRF per family
        audio_codec: Audio codec
        audio_bitrate: Audio bitrate
        target_duration: HLS segment target duration in seconds
        start_number: Index of the first media segment
        thumbnails: Optional thumbnail settings
        subtitles: Optional subtitle settings
    """

    encoder: Optional[Encoder] = None
    codec_family: VideoCodecFamily = VideoCodecFamily.H264
    speed_preset: SpeedPreset = SpeedPreset.SLOW
    quality_preset: QualityPreset = QualityPreset.BALANCED
    audio_codec: AudioCodec = AudioCodec.AAC
    audio_bitrate: AudioBitrate = AudioBitrate.BITRATE_128K
    target_duration: float = 10
    start_number: int = 0
    thumbnails: Optional[ThumbnailOptions] = None
    subtitles: Optional[SubtitleOptions] = None

    def __post_init__(self):
        if self.target_duration <= 0:
            raise ValueError("Segment target duration must be positive")
        if self.start_number < 0:
            raise ValueError("Start number cannot be negative")

    @property
    def thumbnails_enabled(self) -> bool:
        return self.thumbnails is not None and self.thumbnails.enabled

    @property
    def subtitles_enabled(self) -> bool:
        return self.subtitles is not None and self.subtitles.enabled

    def with_changes(self, **changes) -> "ConversionOptions":
        """Return a new snapshot with the given fields replaced."""
        return replace(self, **changes)

