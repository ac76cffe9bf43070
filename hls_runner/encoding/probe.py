# hls_runner/encoding/probe.py
"""
Source inspection through the toolchain.

The container is never parsed here: ``ffmpeg -i`` and ``ffprobe`` do the
work and their text output is matched with regular expressions or decoded
as JSON.
"""

import json
import logging
import re
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from hls_runner.encoding.errors import InvalidSourceError
from hls_runner.encoding.options import RenditionSpec, rendition_by_width
from hls_runner.encoding.toolchain import CancellationToken, Toolchain, run_capture
from hls_runner.encoding.tracks import SubtitleSource, SubtitleTrack, language_display_name

logger = logging.getLogger(__name__)

DURATION_PATTERN = re.compile(r"Duration:\s*(\d+):(\d+):(\d+(?:\.\d+)?)")
VIDEO_STREAM_PATTERN = re.compile(r"Stream #.*Video:.*?\b(\d{2,5})x(\d{2,5})\b")


@dataclass(frozen=True)
class SourceInfo:
    width: int
    height: int
    duration: float

    @property
    def standard_rendition(self) -> Optional[RenditionSpec]:
        return standard_rendition(self.width)

    def as_dict(self) -> dict:
        return {"width": self.width, "height": self.height, "duration": self.duration}


def parse_duration(output: str) -> float:
    """Duration in seconds from ``Duration: HH:MM:SS.ff``, 0.0 when absent."""
    match = DURATION_PATTERN.search(output)
    if not match:
        return 0.0
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def parse_resolution(output: str) -> tuple:
    """(width, height) of the first video stream, (0, 0) when absent."""
    for line in output.splitlines():
        match = VIDEO_STREAM_PATTERN.search(line)
        if match:
            return int(match.group(1)), int(match.group(2))
    return 0, 0


def probe_source(
    toolchain: Toolchain, input_path: str, token: Optional[CancellationToken] = None
) -> SourceInfo:
    """
    Read the resolution and duration of a source file.

    ``ffmpeg -i`` without an output exits with a non-zero status; only its
    output matters here.

    Raises:
        EngineNotFoundError: If ffmpeg is unavailable
        InvalidSourceError: If width, height or duration cannot be read
    """
    ffmpeg = toolchain.require()
    output = run_capture([ffmpeg, "-hide_banner", "-i", input_path], token=token, check=False)

    width, height = parse_resolution(output)
    duration = parse_duration(output)
    if width <= 0 or height <= 0 or duration <= 0:
        logger.error(f"Cannot read source metadata of {input_path}")
        raise InvalidSourceError(details=output[-2000:] if output else None)

    logger.info(f"Source {input_path}: {width}x{height}, {duration:.2f}s")
    return SourceInfo(width=width, height=height, duration=duration)


def standard_rendition(width: int) -> Optional[RenditionSpec]:
    """Ladder entry whose width matches the source width, if any."""
    return rendition_by_width(width)


def parse_subtitle_streams(payload: str) -> List[SubtitleTrack]:
    """Build tracks from ffprobe's JSON stream listing."""
    try:
        data = json.loads(payload or "{}")
    except json.JSONDecodeError as e:
        logger.warning(f"Unreadable ffprobe output: {e}")
        return []

    tracks: List[SubtitleTrack] = []
    for position, stream in enumerate(data.get("streams") or []):
        tags = stream.get("tags") or {}
        language = tags.get("language") or "und"
        tracks.append(
            SubtitleTrack(
                index=int(stream.get("index", position)),
                language=language,
                name=tags.get("title") or language_display_name(language),
                default=position == 0,
                forced=False,
                source=SubtitleSource.EMBEDDED,
                codec=stream.get("codec_name"),
            )
        )
    return tracks


def probe_subtitle_streams(
    toolchain: Toolchain, input_path: str, timeout: Optional[float] = None
) -> List[SubtitleTrack]:
    """
    List the subtitle streams embedded in a source.

    Detection is best effort: a missing ffprobe or a failing probe yields an
    empty list.
    """
    if not toolchain.probe_available:
        logger.warning("ffprobe not available, embedded subtitles cannot be detected")
        return []

    cmd = [
        toolchain.ffprobe,
        "-v",
        "error",
        "-select_streams",
        "s",
        "-show_entries",
        "stream=index,codec_name:stream_tags=language,title",
        "-of",
        "json",
        input_path,
    ]
    try:
        result = subprocess.run(
            cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, timeout=timeout
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.error(f"ffprobe failed to detect subtitle streams: {e}")
        return []

    if result.returncode != 0:
        logger.error(f"ffprobe failed to detect subtitle streams: {result.stderr.strip()}")
        return []

    tracks = parse_subtitle_streams(result.stdout)
    logger.debug(f"Found {len(tracks)} embedded subtitle tracks in {input_path}")
    return tracks
