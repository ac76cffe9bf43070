# hls_runner/encoding/transcoder.py
"""
Video transcoding into HLS renditions.

One ffmpeg process per rendition, run one after the other. Every output line
is forwarded to the consumer and the ``time=`` markers become per-rendition
progress fractions.
"""

import logging
import os
import re
from typing import Iterable, Iterator, List, Optional

from hls_runner.encoding import playlist
from hls_runner.encoding.encoders import EncoderProbe, EncoderSupport, select
from hls_runner.encoding.errors import HLSError, as_hls_error
from hls_runner.encoding.options import ConversionOptions, Encoder, RenditionSpec
from hls_runner.encoding.probe import SourceInfo, probe_source
from hls_runner.encoding.progress import (
    Completed,
    EncodingOutput,
    Failed,
    RenditionProgress,
    Started,
    VideoEvent,
)
from hls_runner.encoding.renditions import plan_or_raise
from hls_runner.encoding.toolchain import CancellationToken, Toolchain, stream_lines

logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"time=(\d+):(\d+):(\d+(?:\.\d+)?)")

# Keyframe interval, ~2s at common frame rates so segments align across renditions
GOP_SIZE = 48


def parse_progress_time(line: str) -> Optional[float]:
    """Elapsed seconds reported by an ffmpeg status line, if any."""
    match = TIME_PATTERN.search(line)
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def progress_fraction(elapsed: float, duration: float) -> float:
    """Elapsed time over the total source duration, clamped to [0, 1]."""
    if duration <= 0:
        return 0.0
    return min(max(elapsed / duration, 0.0), 1.0)


def build_rendition_args(
    ffmpeg: str,
    input_path: str,
    output_dir: str,
    rendition: RenditionSpec,
    encoder: Encoder,
    options: ConversionOptions,
) -> List[str]:
    """
    ffmpeg command line producing one rendition.

    Rate control is capped with maxrate/bufsize only; the quality target is a
    CRF derived from the quality preset and the encoder's codec family.
    """
    maxrate = rendition.bitrate_kbps
    crf = options.quality_preset.crf(encoder.family)
    return [
        ffmpeg,
        "-hide_banner",
        "-y",
        "-i",
        input_path,
        "-c:v",
        encoder.value,
        "-preset",
        options.speed_preset.value,
        "-g",
        str(GOP_SIZE),
        "-keyint_min",
        str(GOP_SIZE),
        "-sc_threshold",
        "0",
        "-maxrate",
        f"{maxrate}k",
        "-bufsize",
        f"{maxrate * 2}k",
        "-vf",
        f"scale=w={rendition.width}:h={rendition.height}:force_original_aspect_ratio=decrease",
        "-crf",
        str(crf),
        "-c:a",
        options.audio_codec.value,
        "-b:a",
        options.audio_bitrate.value,
        "-f",
        "hls",
        "-hls_playlist_type",
        "vod",
        "-hls_flags",
        "independent_segments",
        "-hls_time",
        f"{options.target_duration:g}",
        "-start_number",
        str(options.start_number),
        "-hls_list_size",
        "0",
        "-movflags",
        "+faststart",
        "-hls_segment_filename",
        os.path.join(output_dir, rendition.segment_pattern),
        os.path.join(output_dir, rendition.variant_filename),
    ]


def _encode_rendition(
    ffmpeg: str,
    input_path: str,
    output_dir: str,
    rendition: RenditionSpec,
    encoder: Encoder,
    options: ConversionOptions,
    duration: float,
    token: Optional[CancellationToken],
) -> Iterator[VideoEvent]:
    args = build_rendition_args(ffmpeg, input_path, output_dir, rendition, encoder, options)
    logger.info(f"Encoding {rendition.name} with {encoder.value}")

    last_fraction = 0.0
    for line in stream_lines(args, token=token):
        yield EncodingOutput(line=line, rendition=rendition)
        elapsed = parse_progress_time(line)
        if elapsed is None:
            continue
        # Never report less than what was already reported
        last_fraction = max(last_fraction, progress_fraction(elapsed, duration))
        yield RenditionProgress(fraction=last_fraction, rendition=rendition)

    if last_fraction < 1.0:
        yield RenditionProgress(fraction=1.0, rendition=rendition)


def convert(
    toolchain: Toolchain,
    input_path: str,
    output_dir: str,
    options: ConversionOptions,
    excluded: Iterable[RenditionSpec] = (),
    token: Optional[CancellationToken] = None,
    probe: Optional[EncoderSupport] = None,
    source: Optional[SourceInfo] = None,
) -> Iterator[VideoEvent]:
    """
    Convert a source into HLS renditions and a master playlist.

    The stream always ends with exactly one ``Completed`` or ``Failed`` event.
    On failure the remaining renditions are skipped and the master playlist
    is not written; files already produced are left for the caller to clean.

    Args:
        toolchain: Resolved ffmpeg/ffprobe
        input_path: Source video file
        output_dir: Directory receiving playlists and segments
        options: Conversion settings
        excluded: Renditions the caller opted out of
        token: Cancellation token
        probe: Encoder support check, an ``EncoderProbe`` by default
        source: Already probed source metadata

    Yields:
        VideoEvent: Progress notifications
    """
    try:
        ffmpeg = toolchain.require()
        if token is not None:
            token.raise_if_cancelled()
        if source is None:
            source = probe_source(toolchain, input_path, token=token)
        renditions = plan_or_raise(source.width, source.height, excluded)
        encoder = select(options.encoder, options.codec_family, probe or EncoderProbe(toolchain))
        os.makedirs(output_dir, exist_ok=True)
    except HLSError as e:
        logger.error(f"Conversion of {input_path} cannot start: {e.message}")
        yield Failed(error=e)
        return
    except Exception as e:
        logger.exception(f"Unexpected error preparing conversion of {input_path}")
        yield Failed(error=as_hls_error(e))
        return

    logger.info(
        f"Converting {input_path} into {', '.join(r.name for r in renditions)} "
        f"using {encoder.display_name}"
    )
    yield Started(renditions=tuple(renditions), encoder=encoder.value)

    try:
        for rendition in renditions:
            yield from _encode_rendition(
                ffmpeg, input_path, output_dir, rendition, encoder, options, source.duration, token
            )
        if token is not None:
            token.raise_if_cancelled()
        master = playlist.finalize(output_dir, renditions)
    except HLSError as e:
        logger.error(f"Conversion of {input_path} failed: {e.message}")
        yield Failed(error=e)
        return
    except Exception as e:
        logger.exception(f"Unexpected error converting {input_path}")
        yield Failed(error=as_hls_error(e))
        return

    yield Completed(variants=tuple(renditions), master_playlist=master)
