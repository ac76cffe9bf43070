import pytest

from hls_runner.encoding.errors import ErrorKind, NoEligibleRenditionError
from hls_runner.encoding.options import (
    LADDER,
    RESOLUTION_4K,
    RESOLUTION_240P,
    RESOLUTION_480P,
    RESOLUTION_720P,
    RESOLUTION_1080P,
    rendition_by_name,
    rendition_by_width,
)
from hls_runner.encoding.renditions import options_for, plan, plan_or_raise


def test_full_hd_source_gets_every_lower_rung():
    assert plan(1920, 1080) == [
        RESOLUTION_1080P,
        RESOLUTION_720P,
        RESOLUTION_480P,
        RESOLUTION_240P,
    ]


def test_4k_source_gets_the_whole_ladder():
    assert plan(3840, 2160) == list(LADDER)


def test_plan_never_upscales_either_dimension():
    # Ultra-wide but short: 1080p is too tall, 720p fits
    assert plan(2560, 800)[0] == RESOLUTION_720P
    for spec in plan(1900, 1000):
        assert spec.width <= 1900 and spec.height <= 1000


def test_excluded_renditions_are_dropped():
    assert plan(1280, 720, excluded=[RESOLUTION_480P]) == [RESOLUTION_720P, RESOLUTION_240P]


def test_excluding_a_rung_above_the_source_changes_nothing():
    assert plan(1280, 720, excluded=[RESOLUTION_4K]) == plan(1280, 720)


def test_tiny_source_has_no_rendition():
    assert plan(320, 180) == []
    with pytest.raises(NoEligibleRenditionError) as exc:
        plan_or_raise(320, 180)
    assert exc.value.kind is ErrorKind.NO_ELIGIBLE_RENDITION


def test_everything_excluded_raises_with_details():
    excluded = plan(854, 480)
    with pytest.raises(NoEligibleRenditionError) as exc:
        plan_or_raise(854, 480, iter(excluded))
    assert "480p" in exc.value.details
    assert "240p" in exc.value.details


def test_options_for_lists_selectable_renditions():
    assert [spec.name for spec in options_for(1280, 720)] == ["720p", "480p", "240p"]


def test_rendition_names_and_filenames():
    assert RESOLUTION_1080P.name == "1080p"
    assert RESOLUTION_4K.name == "4k"
    assert RESOLUTION_720P.variant_filename == "variant_720p.m3u8"
    assert RESOLUTION_720P.segment_pattern == "segment_720p_%03d.ts"
    assert RESOLUTION_720P.bandwidth == 1500000
    assert RESOLUTION_720P.resolution == "1280x720"


def test_rendition_lookup():
    assert rendition_by_name(" 1080P ") is RESOLUTION_1080P
    assert rendition_by_width(854) is RESOLUTION_480P
    assert rendition_by_width(1000) is None
    with pytest.raises(ValueError):
        rendition_by_name("360p")
