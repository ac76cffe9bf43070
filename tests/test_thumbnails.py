import pytest

from hls_runner.encoding import progress, thumbnails
from hls_runner.encoding.errors import ErrorKind
from hls_runner.encoding.options import ThumbnailFormat, ThumbnailOptions
from hls_runner.encoding.progress import (
    ExtractingFrames,
    ThumbnailsCompleted,
    ThumbnailsFailed,
    ThumbnailStarted,
)
from hls_runner.encoding.toolchain import CancellationToken


@pytest.mark.parametrize(
    "seconds, expected",
    [
        (0, "00:00:00.000"),
        (65, "00:01:05.000"),
        (3661.5, "01:01:01.500"),
        (7200, "02:00:00.000"),
    ],
)
def test_vtt_timestamp(seconds, expected):
    assert thumbnails.format_vtt_timestamp(seconds) == expected


@pytest.mark.parametrize(
    "index, expected",
    [(0, (0, 0)), (5, (800, 0)), (10, (0, 90)), (15, (800, 90))],
)
def test_sprite_position(index, expected):
    assert thumbnails.sprite_position(index, columns=10, width=160, height=90) == expected


def test_frame_count():
    assert thumbnails.frame_count(60, 10) == 6
    assert thumbnails.frame_count(100, 10) == 10
    assert thumbnails.frame_count(5, 10) == 0
    assert thumbnails.sprite_rows(11, 10) == 2
    assert thumbnails.thumbnail_height(320, 1920, 1080) == 180


def test_render_vtt_last_cue_ends_at_duration():
    text = thumbnails.render_vtt("thumbnails.jpg", 3, 10, 25, 2, 160, 90)
    lines = text.splitlines()

    assert lines[0] == "WEBVTT"
    assert lines[2] == "00:00:00.000 --> 00:00:10.000"
    assert lines[3] == "thumbnails.jpg#xywh=0,0,160,90"
    assert lines[6] == "00:00:10.000 --> 00:00:20.000"
    assert lines[7] == "thumbnails.jpg#xywh=160,0,160,90"
    assert lines[10] == "00:00:20.000 --> 00:00:25.000"
    assert lines[11] == "thumbnails.jpg#xywh=0,90,160,90"


def test_webp_format():
    assert ThumbnailFormat.WEBP.extension == "webp"
    assert ThumbnailFormat.JPEG.quality_args == ("-q:v", "2")


def test_invalid_thumbnail_options():
    with pytest.raises(ValueError):
        ThumbnailOptions(interval=0)
    with pytest.raises(ValueError):
        ThumbnailOptions(columns=0)


def test_generate_sprite_and_vtt(make_toolchain, source_file, tmp_path):
    toolchain = make_toolchain()
    output_dir = tmp_path / "out"
    options = ThumbnailOptions(enabled=True, interval=10, width=160, columns=4)

    events = progress.collect(
        thumbnails.generate(toolchain, source_file, str(output_dir), options, 60, 1920, 1080)
    )

    assert isinstance(events[0], ThumbnailStarted)
    frames = [event for event in events if isinstance(event, ExtractingFrames)]
    assert [event.current for event in frames] == [1, 2, 3, 4, 5, 6]
    assert frames[-1].fraction == 1.0

    completed = events[-1]
    assert isinstance(completed, ThumbnailsCompleted)
    assert completed.sprite_path == output_dir / "thumbnails.jpg"
    assert completed.sprite_path.exists()

    vtt = completed.vtt_path.read_text()
    assert vtt.count("-->") == 6
    assert "thumbnails.jpg#xywh=160,90,160,90" in vtt
    # Individual frames stay out of the output directory
    assert sorted(p.name for p in output_dir.iterdir()) == ["thumbnails.jpg", "thumbnails.vtt"]


def test_generate_short_source_fails(make_toolchain, source_file, tmp_path):
    events = progress.collect(
        thumbnails.generate(
            make_toolchain(), source_file, str(tmp_path), ThumbnailOptions(interval=10), 5, 1920, 1080
        )
    )
    assert isinstance(events[-1], ThumbnailsFailed)
    assert events[-1].error.kind is ErrorKind.INSUFFICIENT_DURATION


@pytest.mark.parametrize("width, height", [(0, 0), (1280, 0), (-1, 720)])
def test_generate_unknown_source_size_fails(make_toolchain, source_file, tmp_path, width, height):
    events = progress.collect(
        thumbnails.generate(
            make_toolchain(), source_file, str(tmp_path), ThumbnailOptions(), 30, width, height
        )
    )
    assert sum(progress.is_terminal(event) for event in events) == 1
    assert isinstance(events[-1], ThumbnailsFailed)
    assert events[-1].error.kind is ErrorKind.INVALID_SOURCE_METADATA
    assert not (tmp_path / "thumbnails.vtt").exists()


def test_generate_frame_failure(make_toolchain, source_file, tmp_path):
    toolchain = make_toolchain(fail=("thumb",))
    events = progress.collect(
        thumbnails.generate(toolchain, source_file, str(tmp_path), ThumbnailOptions(), 30, 1280, 720)
    )
    assert events[-1].error.kind is ErrorKind.SUBPROCESS_FAILED
    assert not (tmp_path / "thumbnails.vtt").exists()


def test_generate_cancelled(make_toolchain, source_file, tmp_path):
    token = CancellationToken()
    token.cancel()
    events = progress.collect(
        thumbnails.generate(
            make_toolchain(), source_file, str(tmp_path), ThumbnailOptions(), 30, 1280, 720, token
        )
    )
    assert events[-1].error.kind is ErrorKind.CANCELLED
