# hls_runner/cli.py
"""
Command-line interface for HLS Runner.

Usage examples:
  - Convert a file with the configured defaults:
      hls-runner convert input.mp4 out/

  - H.265, thumbnails every 5s, skip 4k, English subtitles from a file:
      hls-runner convert input.mkv out/ --codec h265 --thumbnails \
          --thumbnail-interval 5 --exclude 4k --subtitles --subtitle subs/en.srt:en

  - Show the resolved toolchain and encoder support:
      hls-runner check

Exit codes:
  0: success
  1: conversion failed or toolchain unusable
  130: interrupted (conversion cancelled)
"""

import argparse
import sys
from dataclasses import replace
from typing import List, Optional

from hls_runner.__version__ import __version__
from hls_runner.core.config import config
from hls_runner.core.setup_logging import (
    LogContext,
    get_uvicorn_log_config,
    setup_default_logging,
)
from hls_runner.encoding.cleanup import cleanup
from hls_runner.encoding.encoders import EncoderProbe, available_encoders, select
from hls_runner.encoding.options import (
    LADDER_NAMES,
    AudioBitrate,
    AudioCodec,
    ConversionOptions,
    Encoder,
    ExternalSubtitle,
    QualityPreset,
    SpeedPreset,
    SubtitleOptions,
    ThumbnailFormat,
    ThumbnailOptions,
    VideoCodecFamily,
    rendition_by_name,
)
from hls_runner.encoding.progress import RenditionProgress
from hls_runner.encoding.toolchain import Toolchain, resolve_toolchain

logger = setup_default_logging()

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def _choices(enum_cls) -> List[str]:
    return [member.value for member in enum_cls]


def parse_subtitle_arg(value: str) -> ExternalSubtitle:
    """
    Parse ``PATH:LANG[:NAME][:forced]``.

    Raises:
        argparse.ArgumentTypeError: If the language is missing
    """
    parts = value.split(":")
    forced = False
    if len(parts) > 2 and parts[-1].lower() == "forced":
        forced = True
        parts = parts[:-1]
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise argparse.ArgumentTypeError(f"Expected PATH:LANG[:NAME][:forced], got {value!r}")
    name = ":".join(parts[2:]) or None
    return ExternalSubtitle(path=parts[0], language=parts[1], name=name, forced=forced)


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hls-runner", description="Convert videos into adaptive bitrate HLS assets"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    commands = parser.add_subparsers(dest="command", required=True)

    convert = commands.add_parser("convert", help="Convert a video file")
    convert.add_argument("input", help="Source video file")
    convert.add_argument("output", help="Output directory")
    convert.add_argument("--encoder", choices=_choices(Encoder), help="Force a video encoder")
    convert.add_argument("--codec", choices=_choices(VideoCodecFamily), help="Video codec family")
    convert.add_argument("--speed", choices=_choices(SpeedPreset), help="Encoder speed preset")
    convert.add_argument("--quality", choices=_choices(QualityPreset), help="Quality preset")
    convert.add_argument("--audio-codec", choices=_choices(AudioCodec), help="Audio codec")
    convert.add_argument("--audio-bitrate", choices=_choices(AudioBitrate), help="Audio bitrate")
    convert.add_argument("--segment-duration", type=float, help="HLS segment duration (s)")
    convert.add_argument("--start-number", type=int, help="Index of the first segment")
    convert.add_argument(
        "--exclude",
        action="append",
        default=[],
        choices=list(LADDER_NAMES.values()),
        help="Skip a rendition (repeatable)",
    )

    convert.add_argument("--thumbnails", action="store_true", help="Generate seek thumbnails")
    convert.add_argument("--thumbnail-interval", type=float, help="Seconds between thumbnails")
    convert.add_argument("--thumbnail-width", type=int, help="Thumbnail width in pixels")
    convert.add_argument(
        "--thumbnail-format", choices=_choices(ThumbnailFormat), help="Sprite image format"
    )
    convert.add_argument("--thumbnail-columns", type=int, help="Sprite grid columns")
    convert.add_argument(
        "--sequential-thumbnails",
        action="store_true",
        help="Generate thumbnails after the video instead of alongside it",
    )

    convert.add_argument("--subtitles", action="store_true", help="Produce subtitle tracks")
    convert.add_argument(
        "--no-embedded-subtitles",
        action="store_true",
        help="Do not extract subtitle streams from the source",
    )
    convert.add_argument(
        "--subtitle",
        action="append",
        default=[],
        type=parse_subtitle_arg,
        metavar="PATH:LANG[:NAME][:forced]",
        help="External subtitle file (repeatable)",
    )
    convert.add_argument("--default-language", help="Language of the default subtitle track")
    convert.add_argument(
        "--sequential-subtitles",
        action="store_true",
        help="Process subtitles after the video instead of alongside it",
    )
    convert.add_argument(
        "--cleanup-on-failure",
        action="store_true",
        help="Remove the partial output when the conversion fails",
    )

    commands.add_parser("check", help="Show the toolchain and encoder support")

    cleanup_cmd = commands.add_parser("cleanup", help="Empty an output directory")
    cleanup_cmd.add_argument("directory", help="Output directory")

    serve = commands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None, help="Bind address (HLS_RUNNER_HOST)")
    serve.add_argument("--port", type=int, default=None, help="Port (HLS_RUNNER_PORT)")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes")
    return parser


def build_options(args: argparse.Namespace, base: ConversionOptions) -> ConversionOptions:
    """Apply command-line overrides to the configured defaults."""
    changes = {}
    if args.encoder:
        changes["encoder"] = Encoder(args.encoder)
    if args.codec:
        changes["codec_family"] = VideoCodecFamily(args.codec)
    if args.speed:
        changes["speed_preset"] = SpeedPreset(args.speed)
    if args.quality:
        changes["quality_preset"] = QualityPreset(args.quality)
    if args.audio_codec:
        changes["audio_codec"] = AudioCodec(args.audio_codec)
    if args.audio_bitrate:
        changes["audio_bitrate"] = AudioBitrate(args.audio_bitrate)
    if args.segment_duration is not None:
        changes["target_duration"] = args.segment_duration
    if args.start_number is not None:
        changes["start_number"] = args.start_number

    thumbnails = base.thumbnails or ThumbnailOptions()
    thumbnail_changes = {}
    if args.thumbnails:
        thumbnail_changes["enabled"] = True
    if args.thumbnail_interval is not None:
        thumbnail_changes["interval"] = args.thumbnail_interval
    if args.thumbnail_width is not None:
        thumbnail_changes["width"] = args.thumbnail_width
    if args.thumbnail_format:
        thumbnail_changes["format"] = ThumbnailFormat(args.thumbnail_format)
    if args.thumbnail_columns is not None:
        thumbnail_changes["columns"] = args.thumbnail_columns
    if args.sequential_thumbnails:
        thumbnail_changes["concurrent"] = False
    changes["thumbnails"] = replace(thumbnails, **thumbnail_changes)

    subtitles = base.subtitles or SubtitleOptions()
    subtitle_changes = {}
    if args.subtitles:
        subtitle_changes["enabled"] = True
    if args.no_embedded_subtitles:
        subtitle_changes["extract_embedded"] = False
    if args.subtitle:
        subtitle_changes["external_files"] = tuple(args.subtitle)
    if args.default_language:
        subtitle_changes["default_language"] = args.default_language
    if args.sequential_subtitles:
        subtitle_changes["concurrent"] = False
    changes["subtitles"] = replace(subtitles, **subtitle_changes)

    return base.with_changes(**changes)


def _configured_toolchain() -> Toolchain:
    return resolve_toolchain(
        config.FFMPEG_SEARCH_PATHS, ffmpeg=config.FFMPEG_PATH, ffprobe=config.FFPROBE_PATH
    )


class _ProgressPrinter:
    """Print pipeline progress on the terminal."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdout
        self._last_percent = {}

    def __call__(self, state, pipeline, event) -> None:
        if isinstance(event, RenditionProgress):
            percent = int(event.fraction * 100)
            name = event.rendition.name
            if self._last_percent.get(name) != percent:
                self._last_percent[name] = percent
                print(f"\r[{name}] {percent:3d}%", end="", file=self.stream, flush=True)
                if percent == 100:
                    print(file=self.stream)
        elif event.kind not in ("encoding_output", "rendition_progress", "extracting_frames"):
            print(f"[{pipeline}] {event.kind.replace('_', ' ')}", file=self.stream)


def run_convert(args: argparse.Namespace) -> int:
    from hls_runner.managers.conversion_manager import ConversionManager, ConversionStatus

    toolchain = _configured_toolchain()
    if not toolchain.available:
        print("❌ ffmpeg executable not found. Install ffmpeg or set FFMPEG_PATH.", file=sys.stderr)
        return EXIT_FAILURE

    try:
        options = build_options(args, config.default_options())
    except ValueError as e:
        print(f"❌ Invalid options: {e}", file=sys.stderr)
        return EXIT_FAILURE
    excluded = [rendition_by_name(name) for name in args.exclude]

    manager = ConversionManager(
        toolchain,
        max_log_lines=config.MAX_LOG_LINES,
        grace_period=config.PROCESS_TERMINATE_GRACE_SECONDS,
    )
    state = manager.start(
        args.input, args.output, options, excluded=excluded, listener=_ProgressPrinter()
    )
    try:
        with LogContext(logger, conversion_id=state.conversion_id):
            while not manager.wait(state.conversion_id, timeout=0.5):
                pass
    except KeyboardInterrupt:
        print("\n⏹️  Cancelling conversion...")
        manager.cancel(state.conversion_id)
        manager.wait(state.conversion_id)
        return EXIT_INTERRUPTED

    if state.status is ConversionStatus.COMPLETED:
        print(f"✅ Conversion completed: {state.master_playlist}")
        return EXIT_OK

    error = state.error
    print(f"❌ Conversion {state.status.value}: {error.message if error else 'unknown error'}")
    if error is not None and error.details:
        print(error.details, file=sys.stderr)
    if args.cleanup_on_failure and state.cleanup_offered:
        removed = manager.cleanup(state.conversion_id)
        print(f"🗑️  Removed {removed} items from {args.output}")
    return EXIT_FAILURE


def run_check(args: argparse.Namespace) -> int:
    toolchain = _configured_toolchain()
    print(f"ffmpeg:  {toolchain.ffmpeg or 'not found'}")
    print(f"ffprobe: {toolchain.ffprobe or 'not found'}")
    if not toolchain.available:
        return EXIT_FAILURE

    probe = EncoderProbe(toolchain, timeout=config.ENCODER_PROBE_TIMEOUT_SECONDS)
    print("\nEncoders:")
    for encoder, supported in available_encoders(probe).items():
        status_icon = "🟢" if supported else "🔴"
        print(f"  {status_icon} {encoder.value:<18} {encoder.display_name}")
    print("\nSelected:")
    for family in VideoCodecFamily:
        print(f"  {family.display_name}: {select(None, family, probe).value}")
    return EXIT_OK


def run_cleanup(args: argparse.Namespace) -> int:
    removed = cleanup(args.directory)
    print(f"Removed {removed} items from {args.directory}")
    return EXIT_OK


def run_serve(args: argparse.Namespace) -> int:
    import uvicorn

    config.validate_configuration()
    uvicorn.run(
        "hls_runner.main:app",
        host=args.host or config.HLS_RUNNER_HOST,
        port=args.port or config.HLS_RUNNER_PORT,
        reload=args.reload,
        log_config=get_uvicorn_log_config(json_format=config.LOG_JSON),
        workers=1,
    )
    return EXIT_OK


COMMANDS = {
    "convert": run_convert,
    "check": run_check,
    "cleanup": run_cleanup,
    "serve": run_serve,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(argv)
    return COMMANDS[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
