import stat
import subprocess
import sys
import time

import pytest

from hls_runner.encoding import toolchain
from hls_runner.encoding.errors import (
    ConversionCancelled,
    EngineNotFoundError,
    ErrorKind,
    SubprocessFailedError,
)


def _script(path, body):
    path.write_text(f"#!{sys.executable}\n{body}")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return str(path)


def test_resolve_from_search_paths(tmp_path, monkeypatch):
    monkeypatch.setenv("PATH", "")
    _script(tmp_path / "ffmpeg", "")
    _script(tmp_path / "ffprobe", "")

    resolved = toolchain.resolve_toolchain(search_paths=[str(tmp_path / "none"), str(tmp_path)])

    assert resolved.ffmpeg == str(tmp_path / "ffmpeg")
    assert resolved.ffprobe == str(tmp_path / "ffprobe")
    assert resolved.available and resolved.probe_available


def test_explicit_ffmpeg_finds_sibling_ffprobe(tmp_path, monkeypatch):
    monkeypatch.setenv("PATH", "")
    ffmpeg = _script(tmp_path / "ffmpeg", "")
    _script(tmp_path / "ffprobe", "")

    resolved = toolchain.resolve_toolchain(search_paths=[], ffmpeg=ffmpeg)
    assert resolved.ffprobe == str(tmp_path / "ffprobe")


def test_missing_toolchain(tmp_path, monkeypatch):
    monkeypatch.setenv("PATH", "")
    resolved = toolchain.resolve_toolchain(search_paths=[str(tmp_path)])

    assert resolved.ffmpeg is None
    assert not resolved.available
    assert resolved.as_dict()["ffmpeg_available"] is False
    with pytest.raises(EngineNotFoundError) as exc:
        resolved.require()
    assert exc.value.kind is ErrorKind.ENGINE_NOT_FOUND


def test_non_executable_file_is_not_available(tmp_path):
    path = tmp_path / "ffmpeg"
    path.write_text("")
    assert not toolchain.Toolchain(ffmpeg=str(path)).available


def test_stream_lines_merges_output_and_keeps_blank_lines(tmp_path):
    script = _script(
        tmp_path / "talk",
        "import sys\n"
        "print('out one', flush=True)\n"
        "print('', flush=True)\n"
        "sys.stderr.write('err two\\n')\n",
    )
    assert list(toolchain.stream_lines([script])) == ["out one", "", "err two"]


def test_stream_lines_failure_keeps_output_tail(tmp_path):
    script = _script(
        tmp_path / "fail",
        "import sys\n"
        "for i in range(30):\n"
        "    print('line %d' % i)\n"
        "sys.exit(3)\n",
    )
    with pytest.raises(SubprocessFailedError) as exc:
        toolchain.run_capture([script])

    assert exc.value.returncode == 3
    assert exc.value.details.splitlines()[0] == "line 10"
    assert exc.value.details.splitlines()[-1] == "line 29"
    assert exc.value.as_dict()["returncode"] == 3


def test_run_capture_unchecked(tmp_path):
    script = _script(tmp_path / "fail", "import sys\nprint('info')\nsys.exit(1)\n")
    assert toolchain.run_capture([script], check=False) == "info"


def test_missing_executable(tmp_path):
    with pytest.raises(EngineNotFoundError):
        toolchain.run_capture([str(tmp_path / "missing")])


def test_cancelled_token_refuses_to_start(tmp_path):
    token = toolchain.CancellationToken()
    token.cancel()
    with pytest.raises(ConversionCancelled):
        toolchain.run_capture([_script(tmp_path / "noop", "")], token=token)


def test_cancel_terminates_running_process(tmp_path):
    script = _script(
        tmp_path / "slow",
        "import time\n"
        "for i in range(300):\n"
        "    print('tick %d' % i, flush=True)\n"
        "    time.sleep(0.1)\n",
    )
    token = toolchain.CancellationToken(grace_period=1.0)
    started = time.monotonic()

    lines = []
    with pytest.raises(ConversionCancelled):
        for line in toolchain.stream_lines([script], token=token):
            lines.append(line)
            if len(lines) == 2:
                token.cancel()

    assert token.cancelled
    assert time.monotonic() - started < 15
    assert lines[:2] == ["tick 0", "tick 1"]


class _FakeProcess:
    pid = 4242

    def __init__(self, exits_on_term=True):
        self.exits_on_term = exits_on_term
        self.terminated = False
        self.killed = False

    def poll(self):
        return None

    def terminate(self):
        self.terminated = True

    def wait(self, timeout=None):
        if not self.exits_on_term:
            raise subprocess.TimeoutExpired("fake", timeout)
        return -15

    def kill(self):
        self.killed = True


def test_cancel_signals_attached_process_before_returning():
    token = toolchain.CancellationToken(grace_period=0.1)
    process = _FakeProcess()
    token.attach(process)
    assert not process.terminated

    token.cancel()

    assert process.terminated
    assert not process.killed


def test_cancel_kills_process_ignoring_sigterm():
    token = toolchain.CancellationToken(grace_period=0.05)
    process = _FakeProcess(exits_on_term=False)
    token.attach(process)

    token.cancel()
    assert process.terminated

    deadline = time.monotonic() + 5
    while not process.killed and time.monotonic() < deadline:
        time.sleep(0.01)
    assert process.killed
