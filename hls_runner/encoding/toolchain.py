# hls_runner/encoding/toolchain.py
"""
Boundary with the external ffmpeg/ffprobe executables.

Every subprocess of a conversion is launched here, with stdout and stderr
merged so that ffmpeg's progress lines can be read as they are produced.
A ``CancellationToken`` shared with the caller terminates the running
process when a conversion is cancelled.
"""

import logging
import os
import shlex
import shutil
import subprocess
import threading
from collections import deque
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Set

from hls_runner.encoding.errors import (
    ConversionCancelled,
    EngineNotFoundError,
    SubprocessFailedError,
)

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_PATHS = ("/opt/homebrew/bin", "/usr/local/bin", "/usr/bin")

# Lines of output kept for the error details of a failed process
OUTPUT_TAIL_LINES = 20


def _is_executable(path: Optional[str]) -> bool:
    return bool(path) and os.path.isfile(path) and os.access(path, os.X_OK)


@dataclass(frozen=True)
class Toolchain:
    """Resolved paths of the ffmpeg and ffprobe executables."""

    ffmpeg: Optional[str]
    ffprobe: Optional[str] = None

    @property
    def available(self) -> bool:
        return _is_executable(self.ffmpeg)

    @property
    def probe_available(self) -> bool:
        return _is_executable(self.ffprobe)

    def require(self) -> str:
        """
        Return the ffmpeg path.

        Raises:
            EngineNotFoundError: If ffmpeg is not an executable file
        """
        if not self.available:
            raise EngineNotFoundError(details=f"ffmpeg path: {self.ffmpeg}")
        return self.ffmpeg

    def as_dict(self) -> dict:
        return {
            "ffmpeg": self.ffmpeg,
            "ffprobe": self.ffprobe,
            "ffmpeg_available": self.available,
            "ffprobe_available": self.probe_available,
        }


def _find_executable(name: str, search_paths: Sequence[str]) -> Optional[str]:
    for directory in search_paths:
        candidate = os.path.join(directory, name)
        if _is_executable(candidate):
            return candidate
    return shutil.which(name)


def resolve_toolchain(
    search_paths: Sequence[str] = DEFAULT_SEARCH_PATHS,
    ffmpeg: Optional[str] = None,
    ffprobe: Optional[str] = None,
) -> Toolchain:
    """
    Locate ffmpeg and ffprobe.

    Explicit paths win; otherwise the well-known locations are searched in
    order, then ``PATH``. A missing executable is reported as ``None`` and
    only becomes an error when a conversion requires it.

    Args:
        search_paths: Directories searched before ``PATH``
        ffmpeg: Explicit ffmpeg path
        ffprobe: Explicit ffprobe path

    Returns:
        Toolchain: Resolved executables
    """
    ffmpeg_path = ffmpeg or _find_executable("ffmpeg", search_paths)
    ffprobe_path = ffprobe or _find_executable("ffprobe", search_paths)

    # ffprobe ships next to ffmpeg in every distribution we know of
    if not ffprobe_path and ffmpeg_path:
        sibling = os.path.join(os.path.dirname(ffmpeg_path), "ffprobe")
        if _is_executable(sibling):
            ffprobe_path = sibling

    toolchain = Toolchain(ffmpeg=ffmpeg_path, ffprobe=ffprobe_path)
    if toolchain.available:
        logger.info(f"Using ffmpeg at {ffmpeg_path} (ffprobe: {ffprobe_path})")
    else:
        logger.warning("ffmpeg executable not found in %s or PATH", ", ".join(search_paths))
    return toolchain


# ======================================================
# Cancellation
# ======================================================


def _signal_process(process: subprocess.Popen) -> bool:
    """SIGTERM the process; False when it had already exited."""
    if process.poll() is not None:
        return False
    try:
        process.terminate()
    except ProcessLookupError:
        return False
    return True


def _reap_process(process: subprocess.Popen, grace_period: float) -> None:
    """SIGKILL a signalled process that outlives the grace period."""
    try:
        process.wait(timeout=grace_period)
    except subprocess.TimeoutExpired:
        logger.warning(f"Process {process.pid} did not terminate gracefully, forcing...")
        try:
            process.kill()
        except ProcessLookupError:
            pass


def _terminate_process(process: subprocess.Popen, grace_period: float) -> None:
    """SIGTERM now; the grace period wait and SIGKILL run in a background thread."""
    if not _signal_process(process):
        return
    threading.Thread(
        target=_reap_process,
        args=(process, grace_period),
        name=f"terminate-{process.pid}",
        daemon=True,
    ).start()


class CancellationToken:
    """
    Thread-safe cancellation flag shared between a caller and its pipelines.

    Pipelines attach the subprocess they are running; ``cancel()`` marks the
    token and terminates every attached process.
    """

    def __init__(self, grace_period: float = 5.0):
        self.grace_period = grace_period
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._processes: Set[subprocess.Popen] = set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Mark the token and send SIGTERM to every attached process before returning."""
        self._event.set()
        with self._lock:
            processes = list(self._processes)
        for process in processes:
            _terminate_process(process, self.grace_period)

    def attach(self, process: subprocess.Popen) -> None:
        with self._lock:
            self._processes.add(process)
        # Cancelled between the last checkpoint and the spawn
        if self.cancelled:
            _terminate_process(process, self.grace_period)

    def detach(self, process: subprocess.Popen) -> None:
        with self._lock:
            self._processes.discard(process)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise ConversionCancelled()


# ======================================================
# Process execution
# ======================================================


def stream_lines(
    args: List[str],
    token: Optional[CancellationToken] = None,
    check: bool = True,
) -> Iterator[str]:
    """
    Run a command and yield its output lines as they arrive.

    stdout and stderr are merged. Carriage-return terminated progress lines
    are split like regular lines.

    Args:
        args: Command and arguments
        token: Optional cancellation token
        check: Raise on a non-zero exit status

    Yields:
        str: One line of output, without its terminator

    Raises:
        EngineNotFoundError: If the executable does not exist
        ConversionCancelled: If the token fired while the process ran
        SubprocessFailedError: If the process exited with a non-zero status
    """
    if token is not None:
        token.raise_if_cancelled()

    logger.debug(f"Running: {shlex.join(args)}")
    try:
        process = subprocess.Popen(
            args,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            bufsize=1,
        )
    except FileNotFoundError as e:
        raise EngineNotFoundError(details=str(e))
    except OSError as e:
        raise SubprocessFailedError(f"Unable to start {args[0]}: {e}")

    if token is not None:
        token.attach(process)

    tail: deque = deque(maxlen=OUTPUT_TAIL_LINES)
    finished = False
    try:
        assert process.stdout is not None
        for raw_line in process.stdout:
            line = raw_line.rstrip("\n")
            if line.strip():
                tail.append(line)
            yield line
        finished = True
    finally:
        # Consumer stopped early: do not leave the process behind
        if not finished and process.poll() is None:
            process.kill()
        if process.stdout is not None:
            process.stdout.close()
        returncode = process.wait()
        if token is not None:
            token.detach(process)

    if token is not None and token.cancelled:
        raise ConversionCancelled()
    if check and returncode != 0:
        name = os.path.basename(args[0])
        raise SubprocessFailedError(
            f"{name} exited with status {returncode}",
            details="\n".join(tail),
            returncode=returncode,
        )


def run_capture(
    args: List[str],
    token: Optional[CancellationToken] = None,
    check: bool = True,
) -> str:
    """Run a command to completion and return its merged output."""
    return "\n".join(stream_lines(args, token=token, check=check))
