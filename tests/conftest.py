"""Pytest configuration: project root on sys.path, isolated settings and fake ffmpeg/ffprobe."""

import json
import os
import stat
import sys
import tempfile

import pytest

# Ensure the repository root (containing the `hls_runner` package) is on sys.path
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# Settings must be in place before hls_runner.core.config is first imported
TEST_TOKEN = "test-token-0123456789abcdef"
os.environ["HLS_RUNNER_TOKEN"] = TEST_TOKEN
os.environ["LOG_DIRECTORY"] = tempfile.mkdtemp(prefix="hls_runner_logs_")
os.environ["OUTPUT_ROOT"] = tempfile.mkdtemp(prefix="hls_runner_output_")
os.environ["COMPLETION_NOTIFY_MAX_RETRIES"] = "0"
os.environ["COMPLETION_NOTIFY_RETRY_DELAY_SECONDS"] = "0"

from hls_runner.encoding.options import Encoder  # noqa: E402
from hls_runner.encoding.toolchain import Toolchain  # noqa: E402

FAKE_FFMPEG = r'''#!{python}
import os
import sys
import time

WIDTH = {width}
HEIGHT = {height}
DURATION = {duration}
SLEEP = {sleep}
FAIL = {fail!r}
ENCODERS = {encoders!r}

args = sys.argv[1:]


def value_after(flag):
    return args[args.index(flag) + 1]


def touch(path, content=""):
    with open(path, "w") as f:
        f.write(content)


def hms(seconds):
    return "%02d:%02d:%05.2f" % (seconds // 3600, (seconds % 3600) // 60, seconds % 60)


if "-encoders" in args:
    print("Encoders:")
    print(" V..... = Video")
    print(" ------")
    for name in ENCODERS:
        print(" V....D %s  %s encoder" % (name, name))
    sys.exit(0)

if "lavfi" in args:
    sys.exit(0 if value_after("-c:v") in ENCODERS else 1)

if "hls" in args:
    if "hls" in FAIL:
        print("Error while opening encoder for output stream", flush=True)
        sys.exit(1)
    playlist = args[-1]
    segment = value_after("-hls_segment_filename") % int(value_after("-start_number"))
    steps = 4
    for step in range(1, steps + 1):
        elapsed = DURATION * step / steps
        print("frame=%d fps=25 q=28.0 size=1024kB time=%s bitrate=800kbits/s speed=2x"
              % (step * 25, hms(elapsed)), flush=True)
        if SLEEP:
            time.sleep(SLEEP)
    touch(segment, "ts")
    touch(playlist, "#EXTM3U\n#EXT-X-VERSION:3\n#EXTINF:10.0,\n%s\n#EXT-X-ENDLIST\n"
          % os.path.basename(segment))
    sys.exit(0)

if "segment" in args:
    if "segment" in FAIL:
        print("Subtitle encoding failed", flush=True)
        sys.exit(1)
    segment = args[-1] % 0
    touch(segment, "WEBVTT\n")
    touch(value_after("-segment_list"),
          "#EXTM3U\n#EXT-X-VERSION:3\n#EXT-X-TARGETDURATION:10\n#EXTINF:10.0,\n%s\n"
          % os.path.basename(segment))
    sys.exit(0)

if "-filter_complex" in args or "-frames:v" in args:
    if "thumb" in FAIL:
        print("Cannot extract frame", flush=True)
        sys.exit(1)
    touch(args[-1], "img")
    sys.exit(0)

# Probe: ffmpeg -i INPUT without an output
print("Input #0, mov,mp4,m4a,3gp,3g2,mj2, from '%s':" % value_after("-i"))
if DURATION:
    print("  Duration: %s, start: 0.000000, bitrate: 5000 kb/s" % hms(DURATION))
if WIDTH:
    print("  Stream #0:0(und): Video: h264 (High) (avc1 / 0x31637661), yuv420p, %dx%d [SAR 1:1 DAR 16:9], 4800 kb/s, 25 fps" % (WIDTH, HEIGHT))
print("  Stream #0:1(und): Audio: aac (LC), 48000 Hz, stereo, fltp, 128 kb/s")
print("At least one output file must be specified")
sys.exit(1)
'''

FAKE_FFPROBE = r'''#!{python}
import sys

print({payload!r})
sys.exit(0)
'''


def _write_executable(path, content):
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def make_toolchain(tmp_path):
    """
    Build a toolchain around fake ffmpeg/ffprobe scripts.

    The fakes print ffmpeg-like output and create the files a real run would.
    """

    def _make(
        width=1920,
        height=1080,
        duration=60.0,
        sleep=0.0,
        fail=(),
        encoders=("libx264", "libx265"),
        subtitle_streams=(),
    ):
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir(exist_ok=True)
        ffmpeg = _write_executable(
            bin_dir / "ffmpeg",
            FAKE_FFMPEG.format(
                python=sys.executable,
                width=width,
                height=height,
                duration=duration,
                sleep=sleep,
                fail=tuple(fail),
                encoders=tuple(encoders),
            ),
        )
        ffprobe = _write_executable(
            bin_dir / "ffprobe",
            FAKE_FFPROBE.format(
                python=sys.executable,
                payload=json.dumps({"streams": list(subtitle_streams)}),
            ),
        )
        return Toolchain(ffmpeg=ffmpeg, ffprobe=ffprobe)

    return _make


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "input.mp4"
    path.write_bytes(b"\x00" * 16)
    return str(path)


@pytest.fixture
def software_only():
    """Encoder support check accepting only the software encoders."""
    return lambda encoder: encoder in (Encoder.H264_SOFTWARE, Encoder.H265_SOFTWARE)
