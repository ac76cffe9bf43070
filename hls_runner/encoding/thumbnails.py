# hls_runner/encoding/thumbnails.py
"""
Seek-preview thumbnails.

Frames are sampled at a fixed interval, tiled into one sprite image and
indexed by a WebVTT file whose cues point at regions of the sprite
(``thumbnails.jpg#xywh=x,y,w,h``).
"""

import logging
import math
import os
import tempfile
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from hls_runner.encoding.errors import (
    HLSError,
    InsufficientDurationError,
    InvalidSourceError,
    as_hls_error,
)
from hls_runner.encoding.options import ThumbnailOptions
from hls_runner.encoding.playlist import write_atomic
from hls_runner.encoding.progress import (
    AssemblingSprite,
    ExtractingFrames,
    ThumbnailEvent,
    ThumbnailsCompleted,
    ThumbnailsFailed,
    ThumbnailStarted,
    WritingVTT,
)
from hls_runner.encoding.toolchain import CancellationToken, Toolchain, run_capture

logger = logging.getLogger(__name__)

SPRITE_BASENAME = "thumbnails"
VTT_FILENAME = "thumbnails.vtt"
FRAME_PATTERN = "thumb_%04d"


def frame_count(duration: float, interval: float) -> int:
    """Number of frames sampled from a source of the given duration."""
    if interval <= 0 or duration <= 0:
        return 0
    return int(math.floor(duration / interval))


def thumbnail_height(width: int, source_width: int, source_height: int) -> int:
    """Thumbnail height keeping the source aspect ratio."""
    return int(width * source_height / source_width)


def sprite_position(index: int, columns: int, width: int, height: int) -> Tuple[int, int]:
    """Top-left pixel of frame ``index`` in a row-major sprite grid."""
    return (index % columns) * width, (index // columns) * height


def sprite_rows(count: int, columns: int) -> int:
    return int(math.ceil(count / columns))


def format_vtt_timestamp(seconds: float) -> str:
    """
    Format seconds as a WebVTT timestamp (HH:MM:SS.mmm).

    Args:
        seconds: Time in seconds

    Returns:
        str: Formatted timestamp, rounded to the millisecond
    """
    total_ms = int(round(seconds * 1000))
    hours, rest = divmod(total_ms, 3600000)
    minutes, rest = divmod(rest, 60000)
    secs, millis = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"


def render_vtt(
    sprite_filename: str,
    count: int,
    interval: float,
    duration: float,
    columns: int,
    width: int,
    height: int,
) -> str:
    """WebVTT cue index for a sprite of ``count`` frames."""
    lines: List[str] = ["WEBVTT", ""]
    for i in range(count):
        start = i * interval
        end = min((i + 1) * interval, duration)
        x, y = sprite_position(i, columns, width, height)
        lines.append(f"{format_vtt_timestamp(start)} --> {format_vtt_timestamp(end)}")
        lines.append(f"{sprite_filename}#xywh={x},{y},{width},{height}")
        lines.append("")
    return "\n".join(lines)


def _frame_args(
    ffmpeg: str,
    input_path: str,
    output_path: str,
    timestamp: float,
    width: int,
    height: int,
    options: ThumbnailOptions,
) -> List[str]:
    # -ss before -i: fast keyframe seek
    return [
        ffmpeg,
        "-hide_banner",
        "-ss",
        f"{timestamp:.3f}",
        "-i",
        input_path,
        "-frames:v",
        "1",
        "-vf",
        f"scale={width}:{height}",
        *options.format.quality_args,
        "-y",
        output_path,
    ]


def _sprite_args(
    ffmpeg: str, frames_pattern: str, output_path: str, count: int, options: ThumbnailOptions
) -> List[str]:
    return [
        ffmpeg,
        "-hide_banner",
        "-i",
        frames_pattern,
        "-filter_complex",
        f"tile={options.columns}x{sprite_rows(count, options.columns)}",
        *options.format.quality_args,
        "-y",
        output_path,
    ]


def generate(
    toolchain: Toolchain,
    input_path: str,
    output_dir: str,
    options: ThumbnailOptions,
    duration: float,
    width: int,
    height: int,
    token: Optional[CancellationToken] = None,
) -> Iterator[ThumbnailEvent]:
    """
    Produce ``thumbnails.<ext>`` and ``thumbnails.vtt`` in the output directory.

    Individual frames are extracted into a private scratch directory that is
    removed however the generator ends.

    Args:
        toolchain: Resolved ffmpeg/ffprobe
        input_path: Source video file
        output_dir: Directory receiving the sprite and the VTT index
        options: Thumbnail settings
        duration: Source duration in seconds
        width: Source width in pixels
        height: Source height in pixels
        token: Cancellation token

    Yields:
        ThumbnailEvent: Progress notifications, ending with completed or failed
    """
    yield ThumbnailStarted()

    total = frame_count(duration, options.interval)
    if total == 0:
        logger.warning(
            f"Source of {duration:.2f}s is shorter than the {options.interval}s thumbnail interval"
        )
        yield ThumbnailsFailed(error=InsufficientDurationError())
        return

    thumb_width = options.width
    ext = options.format.extension
    sprite_filename = f"{SPRITE_BASENAME}.{ext}"
    sprite_path = Path(output_dir) / sprite_filename
    vtt_path = Path(output_dir) / VTT_FILENAME

    try:
        ffmpeg = toolchain.require()
        if width <= 0 or height <= 0:
            raise InvalidSourceError(f"Cannot size thumbnails for a {width}x{height} source")
        thumb_height = thumbnail_height(options.width, width, height)
        os.makedirs(output_dir, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="hls_runner_thumbs_") as scratch:
            for i in range(total):
                if token is not None:
                    token.raise_if_cancelled()
                yield ExtractingFrames(current=i + 1, total=total)
                frame_path = os.path.join(scratch, f"{FRAME_PATTERN % i}.{ext}")
                run_capture(
                    _frame_args(
                        ffmpeg,
                        input_path,
                        frame_path,
                        i * options.interval,
                        thumb_width,
                        thumb_height,
                        options,
                    ),
                    token=token,
                )

            if token is not None:
                token.raise_if_cancelled()
            yield AssemblingSprite()
            frames_pattern = os.path.join(scratch, f"{FRAME_PATTERN}.{ext}")
            run_capture(
                _sprite_args(ffmpeg, frames_pattern, str(sprite_path), total, options),
                token=token,
            )
            logger.debug(f"Sprite sheet created: {sprite_path}")

        if token is not None:
            token.raise_if_cancelled()
        yield WritingVTT()
        write_atomic(
            vtt_path,
            render_vtt(
                sprite_filename,
                total,
                options.interval,
                duration,
                options.columns,
                thumb_width,
                thumb_height,
            ),
        )
    except HLSError as e:
        logger.error(f"Thumbnail generation failed: {e.message}")
        yield ThumbnailsFailed(error=e)
        return
    except Exception as e:
        logger.exception("Unexpected error generating thumbnails")
        yield ThumbnailsFailed(error=as_hls_error(e))
        return

    logger.info(f"Thumbnails written: {total} frames in {sprite_path}")
    yield ThumbnailsCompleted(sprite_path=sprite_path, vtt_path=vtt_path)
