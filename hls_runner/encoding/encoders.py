# hls_runner/encoding/encoders.py
"""
Encoder selection.

Hardware encoders are preferred when the local ffmpeg build both lists them
and can actually open them; libx264 is the final fallback and is never probed.
"""

import logging
import platform
import subprocess
import threading
from typing import Callable, Dict, Optional

from hls_runner.encoding.options import Encoder, VideoCodecFamily
from hls_runner.encoding.toolchain import Toolchain

logger = logging.getLogger(__name__)

EncoderSupport = Callable[[Encoder], bool]

ARM_MACHINES = {"arm64", "aarch64"}
X86_MACHINES = {"x86_64", "amd64", "x64"}

# 1-frame synthetic source used by the preflight encode
PREFLIGHT_SOURCE = "color=c=black:s=16x16:d=0.1"


def hardware_encoder(family: VideoCodecFamily, machine: Optional[str] = None) -> Optional[Encoder]:
    """Hardware encoder matching the host architecture, if there is one."""
    arch = (machine if machine is not None else platform.machine()).lower()
    if arch in ARM_MACHINES:
        return (
            Encoder.H265_VIDEOTOOLBOX
            if family is VideoCodecFamily.H265
            else Encoder.H264_VIDEOTOOLBOX
        )
    if arch in X86_MACHINES:
        return Encoder.H265_QSV if family is VideoCodecFamily.H265 else Encoder.H264_QSV
    return None


def select(
    override: Optional[Encoder],
    codec_family: VideoCodecFamily,
    probe: EncoderSupport,
    machine: Optional[str] = None,
) -> Encoder:
    """
    Pick the video encoder for a conversion.

    An override is returned as-is. For H.265 the architecture's hardware
    encoder is tried, then libx265; when neither is usable, or for H.264,
    the H.264 hardware encoder is tried, then libx264.

    Args:
        override: Encoder forced by the caller
        codec_family: Requested codec family
        probe: Callable telling whether an encoder works on this host
        machine: Architecture name, defaults to ``platform.machine()``

    Returns:
        Encoder: Selected encoder
    """
    if override is not None:
        return override

    if codec_family is VideoCodecFamily.H265:
        hardware = hardware_encoder(VideoCodecFamily.H265, machine)
        if hardware is not None and probe(hardware):
            return hardware
        if probe(Encoder.H265_SOFTWARE):
            return Encoder.H265_SOFTWARE
        logger.info("No usable H.265 encoder, falling back to H.264")

    hardware = hardware_encoder(VideoCodecFamily.H264, machine)
    if hardware is not None and probe(hardware):
        return hardware
    return Encoder.H264_SOFTWARE


class EncoderProbe:
    """
    Tell whether an encoder is usable with a given ffmpeg.

    An encoder must be listed by ``ffmpeg -encoders`` and survive a one-frame
    encode of a synthetic source. Results are cached for the lifetime of the
    instance; any failure counts as unsupported.
    """

    def __init__(self, toolchain: Toolchain, timeout: float = 15.0):
        self.toolchain = toolchain
        self.timeout = timeout
        self._listed: Optional[set] = None
        self._cache: Dict[Encoder, bool] = {}
        self._lock = threading.Lock()

    def __call__(self, encoder: Encoder) -> bool:
        return self.is_supported(encoder)

    def is_supported(self, encoder: Encoder) -> bool:
        with self._lock:
            if encoder not in self._cache:
                self._cache[encoder] = self._probe(encoder)
            return self._cache[encoder]

    def _probe(self, encoder: Encoder) -> bool:
        if not self.toolchain.available:
            return False
        if encoder.value not in self._listed_encoders():
            logger.debug(f"Encoder {encoder.value} not listed by ffmpeg")
            return False
        ok = self._preflight(encoder)
        logger.info(f"Encoder {encoder.value} {'available' if ok else 'failed preflight'}")
        return ok

    def _listed_encoders(self) -> set:
        if self._listed is None:
            self._listed = set()
            try:
                result = subprocess.run(
                    [self.toolchain.ffmpeg, "-hide_banner", "-encoders"],
                    stdout=subprocess.PIPE,
                    stderr=subprocess.DEVNULL,
                    text=True,
                    timeout=self.timeout,
                )
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.warning(f"Cannot list ffmpeg encoders: {e}")
                return self._listed
            if result.returncode == 0:
                for line in result.stdout.splitlines():
                    parts = line.split()
                    # " V....D libx264  libx264 H.264 / AVC ..."
                    if len(parts) >= 2:
                        self._listed.add(parts[1])
        return self._listed

    def _preflight(self, encoder: Encoder) -> bool:
        cmd = [
            self.toolchain.ffmpeg,
            "-hide_banner",
            "-loglevel",
            "error",
            "-f",
            "lavfi",
            "-i",
            PREFLIGHT_SOURCE,
            "-frames:v",
            "1",
            "-an",
            "-c:v",
            encoder.value,
            "-f",
            "null",
            "-",
        ]
        try:
            result = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"Preflight of {encoder.value} failed: {e}")
            return False
        if result.returncode != 0:
            logger.debug(f"Preflight of {encoder.value} exited with {result.returncode}")
            return False
        return True


def available_encoders(probe: EncoderSupport) -> Dict[Encoder, bool]:
    """Support status of every known encoder."""
    return {encoder: bool(probe(encoder)) for encoder in Encoder}
