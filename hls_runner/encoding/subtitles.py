# hls_runner/encoding/subtitles.py
"""
Subtitle tracks converted to segmented WebVTT.

Embedded streams are detected with ffprobe, external files are appended after
them, and every track is run through ffmpeg's segment muxer. The playlists it
writes lack two tags HLS players require, which are added afterwards.
"""

import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from hls_runner.encoding.errors import HLSError, InvalidSourceError, as_hls_error
from hls_runner.encoding.options import ExternalSubtitle, SubtitleFormat, SubtitleOptions
from hls_runner.encoding.playlist import write_atomic
from hls_runner.encoding.probe import probe_subtitle_streams
from hls_runner.encoding.progress import (
    DetectingStreams,
    ExtractingTrack,
    SegmentingTrack,
    SubtitleEvent,
    SubtitlesCompleted,
    SubtitlesFailed,
    SubtitlesStarted,
    WritingPlaylist,
)
from hls_runner.encoding.toolchain import CancellationToken, Toolchain, run_capture
from hls_runner.encoding.tracks import SubtitleSource, SubtitleTrack, language_display_name

logger = logging.getLogger(__name__)

VOD_TAG = "#EXT-X-PLAYLIST-TYPE:VOD"
ENDLIST_TAG = "#EXT-X-ENDLIST"


def ensure_vod_playlist(text: str) -> str:
    """
    Add the VOD playlist type and end-list tags when they are missing.

    The type tag goes right after ``#EXTM3U``; the end-list tag is appended.
    Text that already carries both is returned unchanged.
    """
    lines = text.splitlines()
    changed = False

    if VOD_TAG not in text:
        for position, line in enumerate(lines):
            if line.startswith("#EXTM3U"):
                lines.insert(position + 1, VOD_TAG)
                changed = True
                break

    if ENDLIST_TAG not in text:
        while lines and not lines[-1].strip():
            lines.pop()
        lines.append(ENDLIST_TAG)
        changed = True

    if not changed:
        return text
    return "\n".join(lines) + "\n"


def postprocess_playlist(path) -> bool:
    """
    Apply ``ensure_vod_playlist`` to a playlist file.

    Returns:
        bool: True if the file was rewritten
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.error(f"Could not read subtitle playlist {path}: {e}")
        return False

    updated = ensure_vod_playlist(content)
    if updated == content:
        return False
    write_atomic(path, updated)
    return True


def tracks_from_external(
    files: Sequence[ExternalSubtitle], start_index: int
) -> List[SubtitleTrack]:
    """One external track per file, indexed from ``start_index``."""
    tracks = []
    for offset, subtitle in enumerate(files):
        fmt = SubtitleFormat.from_path(subtitle.path)
        tracks.append(
            SubtitleTrack(
                index=start_index + offset,
                language=subtitle.language,
                name=subtitle.name or language_display_name(subtitle.language),
                default=False,
                forced=subtitle.forced,
                source=SubtitleSource.EXTERNAL,
                codec=fmt.value if fmt else None,
                source_path=subtitle.path,
            )
        )
    return tracks


def merge_tracks(
    embedded: Sequence[SubtitleTrack],
    external_files: Sequence[ExternalSubtitle],
    default_language: Optional[str] = None,
) -> List[SubtitleTrack]:
    """
    Embedded tracks followed by external ones, with the default flag resolved.

    When a default language is given, exactly the tracks in that language are
    marked default.
    """
    tracks = list(embedded) + tracks_from_external(external_files, len(embedded))
    if default_language:
        tracks = [replace(t, default=t.language == default_language) for t in tracks]
    return tracks


def build_track_args(
    ffmpeg: str,
    track: SubtitleTrack,
    input_path: str,
    output_dir: str,
    target_duration: float,
) -> List[str]:
    """ffmpeg command line converting one track into WebVTT segments."""
    if track.source is SubtitleSource.EMBEDDED:
        source_args = ["-i", input_path, "-map", f"0:{track.index}"]
    elif track.source_path:
        source_args = ["-i", track.source_path, "-map", "0:s:0"]
    else:
        raise InvalidSourceError(f"External subtitle track {track.identity} has no file")

    return [
        ffmpeg,
        "-hide_banner",
        "-y",
        *source_args,
        "-vn",
        "-an",
        "-c:s",
        "webvtt",
        "-f",
        "segment",
        "-segment_time",
        f"{target_duration:g}",
        "-segment_list",
        os.path.join(output_dir, track.playlist_filename),
        "-segment_list_type",
        "m3u8",
        os.path.join(output_dir, track.segment_pattern),
    ]


def process(
    toolchain: Toolchain,
    input_path: str,
    output_dir: str,
    options: SubtitleOptions,
    target_duration: float,
    token: Optional[CancellationToken] = None,
) -> Iterator[SubtitleEvent]:
    """
    Convert every subtitle track of a conversion into segmented WebVTT.

    Having no track at all is a success with an empty result.

    Args:
        toolchain: Resolved ffmpeg/ffprobe
        input_path: Source video file
        output_dir: Directory receiving playlists and segments
        options: Subtitle settings
        target_duration: Segment duration, the same as the video segments
        token: Cancellation token

    Yields:
        SubtitleEvent: Progress notifications, ending with completed or failed
    """
    yield SubtitlesStarted()

    try:
        embedded: List[SubtitleTrack] = []
        if options.extract_embedded:
            yield DetectingStreams()
            embedded = probe_subtitle_streams(toolchain, input_path)

        tracks = merge_tracks(embedded, options.external_files, options.default_language)
        if not tracks:
            logger.info("No subtitle tracks to process")
            yield SubtitlesCompleted(tracks=())
            return

        ffmpeg = toolchain.require()
        os.makedirs(output_dir, exist_ok=True)
        for position, track in enumerate(tracks, start=1):
            if token is not None:
                token.raise_if_cancelled()
            yield ExtractingTrack(track=track, current=position, total=len(tracks))
            yield SegmentingTrack(track=track)
            run_capture(
                build_track_args(ffmpeg, track, input_path, output_dir, target_duration),
                token=token,
            )
            postprocess_playlist(Path(output_dir) / track.playlist_filename)
            yield WritingPlaylist(track=track)
            logger.debug(f"Subtitle track {track.identity} written to {track.playlist_filename}")
    except HLSError as e:
        logger.error(f"Subtitle processing failed: {e.message}")
        yield SubtitlesFailed(error=e)
        return
    except Exception as e:
        logger.exception("Unexpected error processing subtitles")
        yield SubtitlesFailed(error=as_hls_error(e))
        return

    logger.info(f"Subtitles written: {len(tracks)} tracks")
    yield SubtitlesCompleted(tracks=tuple(tracks))
