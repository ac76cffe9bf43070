# hls_runner/models/models.py
"""
Data models for HLS Runner.
Defines Pydantic models for request/response schemas and data validation.
"""

from dataclasses import replace
from typing import List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

from hls_runner.encoding.options import (
    AudioBitrate,
    AudioCodec,
    ConversionOptions,
    Encoder,
    ExternalSubtitle,
    QualityPreset,
    RenditionSpec,
    SpeedPreset,
    SubtitleOptions,
    ThumbnailFormat,
    ThumbnailOptions,
    VideoCodecFamily,
    rendition_by_name,
)


class ThumbnailSettings(BaseModel):
    """
    Thumbnail overrides. Unset fields keep the configured defaults.

    Attributes:
        enabled: Generate a sprite sheet and its VTT index
        interval: Seconds between two sampled frames
        width: Thumbnail width in pixels
        format: Sprite image format
        columns: Sprite grid column count
        concurrent: Run alongside video encoding instead of after it
    """

    enabled: Optional[bool] = Field(None, description="Generate seek-preview thumbnails")
    interval: Optional[float] = Field(None, gt=0, description="Seconds between two thumbnails")
    width: Optional[int] = Field(None, gt=0, description="Thumbnail width in pixels")
    format: Optional[ThumbnailFormat] = Field(None, description="Sprite image format")
    columns: Optional[int] = Field(None, ge=1, description="Sprite grid column count")
    concurrent: Optional[bool] = Field(
        None, description="Run alongside the video pipeline instead of after it"
    )


class ExternalSubtitleModel(BaseModel):
    path: str = Field(..., description="Path of the subtitle file (srt, vtt, ass, ssa)")
    language: str = Field(..., min_length=1, description="Language code, e.g. 'en' or 'fra'")
    name: Optional[str] = Field(None, description="Display name, derived from the language if unset")
    forced: bool = Field(False, description="Forced subtitle track")


class SubtitleSettings(BaseModel):
    """Subtitle overrides. Unset fields keep the configured defaults."""

    enabled: Optional[bool] = Field(None, description="Produce subtitle tracks")
    extract_embedded: Optional[bool] = Field(
        None, description="Extract the subtitle streams embedded in the source"
    )
    external_files: List[ExternalSubtitleModel] = Field(
        default_factory=list, description="Additional subtitle files, in order"
    )
    default_language: Optional[str] = Field(
        None, description="Language whose tracks are advertised as default"
    )
    concurrent: Optional[bool] = Field(
        None, description="Run alongside the video pipeline instead of after it"
    )


class ConversionSettings(BaseModel):
    """
    Encoding overrides applied on top of the configured defaults.

    Attributes:
        encoder: Force a specific encoder, skipping hardware detection
        codec_family: Requested video codec family
        speed_preset: Encoder speed preset
        quality_preset: Quality preset, mapped to a CRF value
        audio_codec: Audio codec
        audio_bitrate: Audio bitrate
        target_duration: HLS segment duration in seconds
        start_number: Index of the first media segment
        thumbnails: Thumbnail overrides
        subtitles: Subtitle overrides
    """

    encoder: Optional[Encoder] = Field(None, description="Encoder override (ffmpeg name)")
    codec_family: Optional[VideoCodecFamily] = Field(None, description="h264 or h265")
    speed_preset: Optional[SpeedPreset] = Field(None, description="Encoder speed preset")
    quality_preset: Optional[QualityPreset] = Field(None, description="high, balanced or efficient")
    audio_codec: Optional[AudioCodec] = Field(None, description="Audio codec")
    audio_bitrate: Optional[AudioBitrate] = Field(None, description="Audio bitrate")
    target_duration: Optional[float] = Field(None, gt=0, description="Segment duration (s)")
    start_number: Optional[int] = Field(None, ge=0, description="First segment index")
    thumbnails: Optional[ThumbnailSettings] = None
    subtitles: Optional[SubtitleSettings] = None

    def to_options(self, base: ConversionOptions) -> ConversionOptions:
        """Merge these overrides into a defaults snapshot."""
        scalar_fields = (
            "encoder",
            "codec_family",
            "speed_preset",
            "quality_preset",
            "audio_codec",
            "audio_bitrate",
            "target_duration",
            "start_number",
        )
        changes = {
            name: getattr(self, name) for name in scalar_fields if getattr(self, name) is not None
        }

        if self.thumbnails is not None:
            overrides = self.thumbnails.model_dump(exclude_none=True)
            changes["thumbnails"] = replace(base.thumbnails or ThumbnailOptions(), **overrides)

        if self.subtitles is not None:
            overrides = self.subtitles.model_dump(exclude_none=True, exclude={"external_files"})
            external = tuple(
                ExternalSubtitle(path=f.path, language=f.language, name=f.name, forced=f.forced)
                for f in self.subtitles.external_files
            )
            base_subtitles = base.subtitles or SubtitleOptions()
            changes["subtitles"] = replace(
                base_subtitles,
                external_files=external or base_subtitles.external_files,
                **overrides,
            )

        return base.with_changes(**changes)


class ConversionRequest(BaseModel):
    """
    Request to start a conversion.

    Attributes:
        input_path: Source video file on the runner host
        output_dir: Output directory, relative to OUTPUT_ROOT
        options: Encoding overrides
        excluded_renditions: Ladder entries to skip ("1080p", "4k", ...)
        completion_callback: URL notified with the final state
    """

    input_path: str = Field(..., min_length=1, description="Source video file")
    output_dir: str = Field(
        ..., min_length=1, description="Output directory, relative to the configured output root"
    )
    options: ConversionSettings = Field(default_factory=ConversionSettings)
    excluded_renditions: List[str] = Field(
        default_factory=list, description="Renditions to skip, by name (e.g. '1080p')"
    )
    completion_callback: Optional[str] = Field(
        None, description="Callback URL - the runner will POST the final state to this URL"
    )

    @field_validator("excluded_renditions")
    @classmethod
    def validate_excluded_renditions(cls, v: List[str]) -> List[str]:
        for name in v:
            rendition_by_name(name)
        return v

    @field_validator("completion_callback")
    @classmethod
    def validate_completion_callback(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("completion_callback must be an http(s) URL")
        return v

    @property
    def excluded(self) -> List[RenditionSpec]:
        return [rendition_by_name(name) for name in self.excluded_renditions]


class ConversionResultResponse(BaseModel):
    """Outcome of an operation on a conversion."""

    conversion_id: str = Field(..., description="Conversion identifier")
    status: str = Field(..., description="Status of the operation")
    removed: Optional[int] = Field(None, description="Entries removed by a cleanup")
