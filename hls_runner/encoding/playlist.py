# hls_runner/encoding/playlist.py
"""
Master playlist assembly.

ffmpeg writes one media playlist per rendition; the master playlist that
ties them together is written here.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Sequence

from hls_runner.encoding.errors import PlaylistAssemblyError
from hls_runner.encoding.options import RenditionSpec
from hls_runner.encoding.tracks import SubtitleTrack

logger = logging.getLogger(__name__)

MASTER_PLAYLIST = "master.m3u8"
SUBTITLE_GROUP = "subs"


def write_atomic(path, text: str) -> None:
    """
    Write text to a file so readers never observe a partial file.

    The content goes to a temporary file in the same directory, is flushed to
    disk and then renamed over the destination.
    """
    path = Path(path)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _yes_no(value: bool) -> str:
    return "YES" if value else "NO"


def _media_line(track: SubtitleTrack) -> str:
    name = track.name.replace('"', "'")
    return (
        f'#EXT-X-MEDIA:TYPE=SUBTITLES,GROUP-ID="{SUBTITLE_GROUP}",'
        f'NAME="{name}",LANGUAGE="{track.language}",'
        f"DEFAULT={_yes_no(track.default)},AUTOSELECT={_yes_no(track.default)},"
        f"FORCED={_yes_no(track.forced)},"
        f'URI="{track.playlist_filename}"'
    )


def render_master(
    variants: Sequence[RenditionSpec], subtitle_tracks: Sequence[SubtitleTrack] = ()
) -> str:
    """
    Build the master playlist text.

    Raises:
        PlaylistAssemblyError: If there is no variant
    """
    if not variants:
        raise PlaylistAssemblyError()

    lines = ["#EXTM3U"]
    for track in subtitle_tracks:
        lines.append(_media_line(track))

    group = f',SUBTITLES="{SUBTITLE_GROUP}"' if subtitle_tracks else ""
    for variant in variants:
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={variant.bandwidth},"
            f"RESOLUTION={variant.resolution}{group}"
        )
        lines.append(variant.variant_filename)
    return "\n".join(lines) + "\n"


def finalize(
    output_dir,
    variants: Sequence[RenditionSpec],
    subtitle_tracks: Sequence[SubtitleTrack] = (),
) -> Path:
    """
    Write ``master.m3u8`` into the output directory.

    Returns:
        Path: Location of the master playlist

    Raises:
        PlaylistAssemblyError: If there is no variant or the file cannot be written
    """
    text = render_master(variants, subtitle_tracks)
    path = Path(output_dir) / MASTER_PLAYLIST
    try:
        write_atomic(path, text)
    except OSError as e:
        raise PlaylistAssemblyError(f"Cannot write master playlist: {e}")
    logger.info(
        f"Master playlist written to {path} "
        f"({len(variants)} variants, {len(subtitle_tracks)} subtitle tracks)"
    )
    return path
