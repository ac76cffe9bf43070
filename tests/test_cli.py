import argparse

import pytest

from hls_runner import cli
from hls_runner.core.config import config
from hls_runner.encoding.options import (
    ConversionOptions,
    Encoder,
    ExternalSubtitle,
    SpeedPreset,
    ThumbnailFormat,
    VideoCodecFamily,
)
from hls_runner.encoding.toolchain import Toolchain


@pytest.fixture
def fake_toolchain(monkeypatch, make_toolchain):
    """Make the CLI resolve the fake toolchain, accepting only software encoders."""

    def _use(**options):
        toolchain = make_toolchain(**options)
        monkeypatch.setattr(cli, "_configured_toolchain", lambda: toolchain)
        return toolchain

    return _use


def _parse(*argv):
    return cli._build_arg_parser().parse_args(list(argv))


def test_parse_subtitle_arg():
    assert cli.parse_subtitle_arg("subs/en.srt:en") == ExternalSubtitle(
        path="subs/en.srt", language="en"
    )
    assert cli.parse_subtitle_arg("fr.vtt:fr:Français:forced") == ExternalSubtitle(
        path="fr.vtt", language="fr", name="Français", forced=True
    )
    assert cli.parse_subtitle_arg("de.srt:de:forced") == ExternalSubtitle(
        path="de.srt", language="de", forced=True
    )
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_subtitle_arg("no-language.srt")


def test_build_options_from_flags():
    args = _parse(
        "convert",
        "in.mp4",
        "out",
        "--encoder",
        "libx265",
        "--codec",
        "h265",
        "--speed",
        "veryfast",
        "--segment-duration",
        "4",
        "--thumbnails",
        "--thumbnail-format",
        "webp",
        "--sequential-thumbnails",
        "--subtitles",
        "--subtitle",
        "en.srt:en",
        "--default-language",
        "en",
    )
    options = cli.build_options(args, ConversionOptions())

    assert options.encoder is Encoder.H265_SOFTWARE
    assert options.codec_family is VideoCodecFamily.H265
    assert options.speed_preset is SpeedPreset.VERYFAST
    assert options.target_duration == 4
    assert options.thumbnails_enabled
    assert options.thumbnails.format is ThumbnailFormat.WEBP
    assert options.thumbnails.concurrent is False
    assert options.subtitles_enabled
    assert options.subtitles.external_files == (ExternalSubtitle(path="en.srt", language="en"),)
    assert options.subtitles.default_language == "en"


def test_build_options_without_flags_keeps_defaults():
    options = cli.build_options(_parse("convert", "in.mp4", "out"), ConversionOptions())
    assert options.encoder is None
    assert not options.thumbnails_enabled
    assert not options.subtitles_enabled


def test_unknown_rendition_is_rejected():
    with pytest.raises(SystemExit):
        _parse("convert", "in.mp4", "out", "--exclude", "360p")


def test_convert_success(fake_toolchain, monkeypatch, source_file, tmp_path, capsys, software_only):
    fake_toolchain()
    monkeypatch.setattr(cli.EncoderProbe, "__call__", lambda self, encoder: software_only(encoder))
    output_dir = tmp_path / "out"

    code = cli.main(["convert", source_file, str(output_dir), "--exclude", "1080p"])

    assert code == cli.EXIT_OK
    out = capsys.readouterr().out
    assert "[720p] 100%" in out
    assert "Conversion completed" in out
    assert (output_dir / "master.m3u8").exists()
    assert not (output_dir / "variant_1080p.m3u8").exists()


def test_convert_failure_with_cleanup(fake_toolchain, monkeypatch, source_file, tmp_path, capsys):
    fake_toolchain(fail=("hls",))
    monkeypatch.setattr(cli.EncoderProbe, "__call__", lambda self, encoder: False)
    output_dir = tmp_path / "out"
    output_dir.mkdir()
    (output_dir / "stale.ts").write_text("x")

    code = cli.main(["convert", source_file, str(output_dir), "--cleanup-on-failure"])

    assert code == cli.EXIT_FAILURE
    out = capsys.readouterr().out
    assert "Conversion failed" in out
    assert "Removed 1 items" in out
    assert list(output_dir.iterdir()) == []


def test_convert_without_ffmpeg(monkeypatch, source_file, tmp_path, capsys):
    monkeypatch.setattr(cli, "_configured_toolchain", lambda: Toolchain(ffmpeg=None))
    assert cli.main(["convert", source_file, str(tmp_path)]) == cli.EXIT_FAILURE
    assert "ffmpeg executable not found" in capsys.readouterr().err


def test_check(fake_toolchain, capsys):
    fake_toolchain(encoders=("libx264",))
    assert cli.main(["check"]) == cli.EXIT_OK
    out = capsys.readouterr().out
    assert "libx264" in out
    assert "H.265: libx264" in out


def test_check_without_ffmpeg(monkeypatch, capsys):
    monkeypatch.setattr(cli, "_configured_toolchain", lambda: Toolchain(ffmpeg=None))
    assert cli.main(["check"]) == cli.EXIT_FAILURE
    assert "ffmpeg:  not found" in capsys.readouterr().out


def test_cleanup_command(tmp_path, capsys):
    (tmp_path / "master.m3u8").write_text("#EXTM3U\n")
    assert cli.main(["cleanup", str(tmp_path)]) == cli.EXIT_OK
    assert "Removed 1 items" in capsys.readouterr().out


def test_serve_uses_configured_address(monkeypatch):
    import uvicorn

    calls = {}
    monkeypatch.setattr(uvicorn, "run", lambda app, **kwargs: calls.update(app=app, **kwargs))

    assert cli.main(["serve", "--port", "9000"]) == cli.EXIT_OK
    assert calls["app"] == "hls_runner.main:app"
    assert calls["host"] == config.HLS_RUNNER_HOST
    assert calls["port"] == 9000
    assert calls["log_config"]["version"] == 1
