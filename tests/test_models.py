import pytest
from pydantic import ValidationError

from hls_runner.encoding.options import (
    RESOLUTION_4K,
    AudioCodec,
    ConversionOptions,
    Encoder,
    ExternalSubtitle,
    SubtitleOptions,
    ThumbnailFormat,
    ThumbnailOptions,
)
from hls_runner.models.models import ConversionRequest, ConversionSettings

BASE = ConversionOptions(
    thumbnails=ThumbnailOptions(enabled=False, interval=10, width=320),
    subtitles=SubtitleOptions(
        enabled=False,
        external_files=(ExternalSubtitle(path="/subs/base.srt", language="en"),),
        default_language="en",
    ),
)


def test_empty_settings_keep_the_defaults():
    assert ConversionSettings().to_options(BASE) == BASE


def test_overrides_are_merged():
    settings = ConversionSettings.model_validate(
        {
            "encoder": "libx265",
            "audio_codec": "libopus",
            "start_number": 3,
            "thumbnails": {"enabled": True, "format": "webp"},
            "subtitles": {
                "enabled": True,
                "external_files": [{"path": "/subs/fr.vtt", "language": "fr", "forced": True}],
            },
        }
    )
    options = settings.to_options(BASE)

    assert options.encoder is Encoder.H265_SOFTWARE
    assert options.audio_codec is AudioCodec.OPUS
    assert options.start_number == 3
    assert options.thumbnails == ThumbnailOptions(
        enabled=True, interval=10, width=320, format=ThumbnailFormat.WEBP
    )
    assert options.subtitles.enabled
    assert options.subtitles.default_language == "en"
    assert options.subtitles.external_files == (
        ExternalSubtitle(path="/subs/fr.vtt", language="fr", forced=True),
    )


def test_subtitle_settings_without_files_keep_configured_files():
    options = ConversionSettings(subtitles={"enabled": True}).to_options(BASE)
    assert options.subtitles.external_files == BASE.subtitles.external_files


def test_request_excluded_renditions():
    request = ConversionRequest(
        input_path="/media/in.mp4", output_dir="job", excluded_renditions=["4K"]
    )
    assert request.excluded == [RESOLUTION_4K]


@pytest.mark.parametrize(
    "field, value",
    [
        ("excluded_renditions", ["1081p"]),
        ("completion_callback", "not a url"),
        ("input_path", ""),
    ],
)
def test_request_validation(field, value):
    data = {"input_path": "/media/in.mp4", "output_dir": "job"}
    data[field] = value
    with pytest.raises(ValidationError):
        ConversionRequest(**data)
