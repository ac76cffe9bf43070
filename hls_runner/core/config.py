# hls_runner/core/config.py
"""
Configuration module for HLS Runner.
Handles environment variables, security settings, and conversion defaults.
"""

import os
import sys
import warnings
from enum import Enum
from typing import List, Optional, Type, TypeVar

from hls_runner.encoding.options import (
    AudioBitrate,
    AudioCodec,
    ConversionOptions,
    Encoder,
    QualityPreset,
    SpeedPreset,
    SubtitleOptions,
    ThumbnailFormat,
    ThumbnailOptions,
    VideoCodecFamily,
)
from hls_runner.encoding.toolchain import DEFAULT_SEARCH_PATHS

# Process-wide state shared by get_config() and reload_config_from_env()
_CONFIG_ENV_LOADED = False
_CONFIG_INSTANCE = None

DEFAULT_TOKEN = "default-hls-runner-token"

E = TypeVar("E", bound=Enum)


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Parse a boolean from a string with a fallback default."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _parse_int(
    value: Optional[str],
    default: int,
    *,
    min_value: Optional[int] = None,
    max_value: Optional[int] = None,
) -> int:
    """Parse an integer from a string with optional bounds and fallback default."""
    if value is None:
        return default
    try:
        parsed = int(value.strip())
    except (TypeError, ValueError):
        return default
    if min_value is not None:
        parsed = max(min_value, parsed)
    if max_value is not None:
        parsed = min(max_value, parsed)
    return parsed


def _parse_float(
    value: Optional[str],
    default: float,
    *,
    min_value: Optional[float] = None,
    max_value: Optional[float] = None,
) -> float:
    """Parse a float from a string with optional bounds and fallback default."""
    if value is None:
        return default
    try:
        parsed = float(value.strip())
    except (TypeError, ValueError):
        return default
    if min_value is not None:
        parsed = max(min_value, parsed)
    if max_value is not None:
        parsed = min(max_value, parsed)
    return parsed


def _parse_csv(value: Optional[str], default: List[str]) -> List[str]:
    items = [v.strip() for v in (value or "").split(",") if v.strip()]
    return items or list(default)


def _parse_enum(
    enum_cls: Type[E], value: Optional[str], default: Optional[E], key: str
) -> Optional[E]:
    """Enum member by value, or the default with a warning for unknown values."""
    if value is None or not value.strip():
        return default
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        warnings.warn(f"Invalid {key} value {value!r} ignored, using {default}")
        return default


def _ensure_env_loaded() -> None:
    """Read the project ``.env`` into the process environment, once per process."""
    global _CONFIG_ENV_LOADED

    if _CONFIG_ENV_LOADED:
        return
    _CONFIG_ENV_LOADED = True

    project_dir = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    env_path = os.path.join(project_dir, ".env")
    if os.path.exists(env_path):
        from dotenv import load_dotenv

        load_dotenv(env_path)
        print(f"HLS runner settings loaded from: {env_path}")


def get_config():
    """
    Return the process-wide ``Config``, building it on first use.

    Returns:
        Config: Configuration instance
    """
    global _CONFIG_INSTANCE

    if _CONFIG_INSTANCE is None:
        _ensure_env_loaded()
        _CONFIG_INSTANCE = Config()
    return _CONFIG_INSTANCE


def reload_config_from_env():
    """
    Re-read the environment into the existing ``Config`` object.

    The instance is updated in place: modules holding ``config`` from an
    earlier import see the new values.
    """
    global _CONFIG_INSTANCE, config

    _ensure_env_loaded()
    refreshed = Config()

    if _CONFIG_INSTANCE is None:
        _CONFIG_INSTANCE = refreshed
    else:
        _CONFIG_INSTANCE.__dict__.clear()
        _CONFIG_INSTANCE.__dict__.update(refreshed.__dict__)

    config = _CONFIG_INSTANCE
    return _CONFIG_INSTANCE


class Config:
    """
    Runner settings read from environment variables.

    Values are parsed once at construction; call ``reload_config_from_env()``
    after changing the environment.
    """

    def __init__(self):

        # DEBUG mode
        self.DEBUG: bool = _parse_bool(os.getenv("DEBUG"), default=False)

        # HTTP API
        self.HLS_RUNNER_HOST: str = os.getenv("HLS_RUNNER_HOST", "0.0.0.0")
        self.HLS_RUNNER_PORT: int = _parse_int(os.getenv("HLS_RUNNER_PORT"), 8090)

        # API token authentication
        self.HLS_RUNNER_TOKEN: str = os.getenv("HLS_RUNNER_TOKEN", DEFAULT_TOKEN)

        # CORS configuration
        self.CORS_ALLOW_ORIGINS = _parse_csv(os.getenv("CORS_ALLOW_ORIGINS", "*"), ["*"])
        self.CORS_ALLOW_CREDENTIALS: bool = _parse_bool(
            os.getenv("CORS_ALLOW_CREDENTIALS"), default=False
        )
        self.CORS_ALLOW_METHODS = _parse_csv(os.getenv("CORS_ALLOW_METHODS", "*"), ["*"])
        self.CORS_ALLOW_HEADERS = _parse_csv(os.getenv("CORS_ALLOW_HEADERS", "*"), ["*"])

        # Log directory
        self.LOG_DIRECTORY: str = os.getenv("LOG_DIRECTORY", "/tmp/hls-runner/logs")
        # Always kept with a trailing slash
        if not self.LOG_DIRECTORY.endswith("/"):
            self.LOG_DIRECTORY += "/"

        # Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_JSON: bool = _parse_bool(os.getenv("LOG_JSON"), default=False)
        # Rotation of the log files (bytes, kept files)
        self.LOG_MAX_BYTES: int = _parse_int(
            os.getenv("LOG_MAX_BYTES"), 10 * 1024 * 1024, min_value=1024
        )
        self.LOG_BACKUP_COUNT: int = _parse_int(os.getenv("LOG_BACKUP_COUNT"), 10, min_value=0)

        # # # Toolchain # # #
        # Explicit executables; searched in FFMPEG_SEARCH_PATHS then PATH otherwise
        self.FFMPEG_PATH: Optional[str] = os.getenv("FFMPEG_PATH") or None
        self.FFPROBE_PATH: Optional[str] = os.getenv("FFPROBE_PATH") or None
        self.FFMPEG_SEARCH_PATHS: List[str] = _parse_csv(
            os.getenv("FFMPEG_SEARCH_PATHS"), list(DEFAULT_SEARCH_PATHS)
        )
        # Timeout of each encoder capability probe
        self.ENCODER_PROBE_TIMEOUT_SECONDS: float = _parse_float(
            os.getenv("ENCODER_PROBE_TIMEOUT_SECONDS"), 15.0, min_value=1.0
        )
        # Delay between SIGTERM and SIGKILL when a conversion is cancelled
        self.PROCESS_TERMINATE_GRACE_SECONDS: float = _parse_float(
            os.getenv("PROCESS_TERMINATE_GRACE_SECONDS"), 5.0, min_value=0.0
        )

        # Root of every output directory requested through the API
        self.OUTPUT_ROOT: str = os.getenv("OUTPUT_ROOT", "/tmp/hls-runner/output")

        # # # Default conversion settings # # #
        self.HLS_DEFAULT_ENCODER: Optional[Encoder] = _parse_enum(
            Encoder, os.getenv("HLS_DEFAULT_ENCODER"), None, "HLS_DEFAULT_ENCODER"
        )
        self.HLS_DEFAULT_CODEC: VideoCodecFamily = _parse_enum(
            VideoCodecFamily, os.getenv("HLS_DEFAULT_CODEC"), VideoCodecFamily.H264, "HLS_DEFAULT_CODEC"
        )
        # -preset passed to the encoder, ultrafast to veryslow
        self.HLS_DEFAULT_SPEED_PRESET: SpeedPreset = _parse_enum(
            SpeedPreset,
            os.getenv("HLS_DEFAULT_SPEED_PRESET"),
            SpeedPreset.SLOW,
            "HLS_DEFAULT_SPEED_PRESET",
        )
        # Quality preset (high, balanced, efficient)
        self.HLS_DEFAULT_QUALITY_PRESET: QualityPreset = _parse_enum(
            QualityPreset,
            os.getenv("HLS_DEFAULT_QUALITY_PRESET"),
            QualityPreset.BALANCED,
            "HLS_DEFAULT_QUALITY_PRESET",
        )
        self.HLS_DEFAULT_AUDIO_CODEC: AudioCodec = _parse_enum(
            AudioCodec, os.getenv("HLS_DEFAULT_AUDIO_CODEC"), AudioCodec.AAC, "HLS_DEFAULT_AUDIO_CODEC"
        )
        self.HLS_DEFAULT_AUDIO_BITRATE: AudioBitrate = _parse_enum(
            AudioBitrate,
            os.getenv("HLS_DEFAULT_AUDIO_BITRATE"),
            AudioBitrate.BITRATE_128K,
            "HLS_DEFAULT_AUDIO_BITRATE",
        )
        # HLS segment target duration, in seconds
        self.HLS_DEFAULT_TARGET_DURATION: float = _parse_float(
            os.getenv("HLS_DEFAULT_TARGET_DURATION"), 10.0, min_value=1.0
        )
        self.HLS_DEFAULT_START_NUMBER: int = _parse_int(
            os.getenv("HLS_DEFAULT_START_NUMBER"), 0, min_value=0
        )

        # # # Thumbnails # # #
        self.HLS_THUMBNAIL_ENABLED: bool = _parse_bool(
            os.getenv("HLS_THUMBNAIL_ENABLED"), default=False
        )
        self.HLS_THUMBNAIL_INTERVAL: float = _parse_float(
            os.getenv("HLS_THUMBNAIL_INTERVAL"), 10.0, min_value=1.0
        )
        self.HLS_THUMBNAIL_WIDTH: int = _parse_int(
            os.getenv("HLS_THUMBNAIL_WIDTH"), 320, min_value=16
        )
        self.HLS_THUMBNAIL_FORMAT: ThumbnailFormat = _parse_enum(
            ThumbnailFormat,
            os.getenv("HLS_THUMBNAIL_FORMAT"),
            ThumbnailFormat.JPEG,
            "HLS_THUMBNAIL_FORMAT",
        )
        self.HLS_THUMBNAIL_COLUMNS: int = _parse_int(
            os.getenv("HLS_THUMBNAIL_COLUMNS"), 10, min_value=1
        )
        self.HLS_THUMBNAIL_CONCURRENT: bool = _parse_bool(
            os.getenv("HLS_THUMBNAIL_CONCURRENT"), default=True
        )

        # # # Subtitles # # #
        self.HLS_SUBTITLES_ENABLED: bool = _parse_bool(
            os.getenv("HLS_SUBTITLES_ENABLED"), default=False
        )
        self.HLS_SUBTITLES_EXTRACT_EMBEDDED: bool = _parse_bool(
            os.getenv("HLS_SUBTITLES_EXTRACT_EMBEDDED"), default=True
        )
        self.HLS_SUBTITLES_DEFAULT_LANGUAGE: Optional[str] = (
            os.getenv("HLS_SUBTITLES_DEFAULT_LANGUAGE") or None
        )
        self.HLS_SUBTITLES_CONCURRENT: bool = _parse_bool(
            os.getenv("HLS_SUBTITLES_CONCURRENT"), default=True
        )

        # Completion notification retry settings
        # Maximum number of retries for notifying conversion completion
        self.COMPLETION_NOTIFY_MAX_RETRIES: int = _parse_int(
            os.getenv("COMPLETION_NOTIFY_MAX_RETRIES"),
            3,
            min_value=0,
        )
        # First retry delay in seconds, multiplied by the backoff factor after each attempt
        self.COMPLETION_NOTIFY_RETRY_DELAY_SECONDS: float = _parse_float(
            os.getenv("COMPLETION_NOTIFY_RETRY_DELAY_SECONDS"),
            5.0,
            min_value=0.0,
        )
        self.COMPLETION_NOTIFY_BACKOFF_FACTOR: float = _parse_float(
            os.getenv("COMPLETION_NOTIFY_BACKOFF_FACTOR"),
            1.5,
            min_value=1.0,
        )

        # Status messages and encoder lines kept per conversion
        self.MAX_LOG_LINES: int = _parse_int(os.getenv("MAX_LOG_LINES"), 500, min_value=10)

    def default_options(self) -> ConversionOptions:
        """Conversion settings seeded from the HLS_DEFAULT_* / HLS_THUMBNAIL_* / HLS_SUBTITLES_* keys."""
        return ConversionOptions(
            encoder=self.HLS_DEFAULT_ENCODER,
            codec_family=self.HLS_DEFAULT_CODEC,
            speed_preset=self.HLS_DEFAULT_SPEED_PRESET,
            quality_preset=self.HLS_DEFAULT_QUALITY_PRESET,
            audio_codec=self.HLS_DEFAULT_AUDIO_CODEC,
            audio_bitrate=self.HLS_DEFAULT_AUDIO_BITRATE,
            target_duration=self.HLS_DEFAULT_TARGET_DURATION,
            start_number=self.HLS_DEFAULT_START_NUMBER,
            thumbnails=ThumbnailOptions(
                enabled=self.HLS_THUMBNAIL_ENABLED,
                interval=self.HLS_THUMBNAIL_INTERVAL,
                width=self.HLS_THUMBNAIL_WIDTH,
                format=self.HLS_THUMBNAIL_FORMAT,
                columns=self.HLS_THUMBNAIL_COLUMNS,
                concurrent=self.HLS_THUMBNAIL_CONCURRENT,
            ),
            subtitles=SubtitleOptions(
                enabled=self.HLS_SUBTITLES_ENABLED,
                extract_embedded=self.HLS_SUBTITLES_EXTRACT_EMBEDDED,
                default_language=self.HLS_SUBTITLES_DEFAULT_LANGUAGE,
                concurrent=self.HLS_SUBTITLES_CONCURRENT,
            ),
        )

    def validate_configuration(self) -> None:
        """
        Check the settings needed to serve the API.

        Raises:
            ValueError: On the first invalid setting found
        """
        self._validate_ports()
        self._validate_paths()
        self._validate_tokens()
        self._validate_cors()

    def _validate_ports(self) -> None:
        if not (1 <= self.HLS_RUNNER_PORT <= 65535):
            raise ValueError("HLS_RUNNER_PORT must be between 1 and 65535")

    def _validate_paths(self) -> None:
        if not os.path.isabs(self.OUTPUT_ROOT):
            raise ValueError("OUTPUT_ROOT must be an absolute path")

    def _validate_tokens(self) -> None:
        if not self.HLS_RUNNER_TOKEN or self.HLS_RUNNER_TOKEN == DEFAULT_TOKEN:
            raise ValueError("HLS_RUNNER_TOKEN must be set to a secure value")
        if len(self.HLS_RUNNER_TOKEN) < 16:
            raise ValueError("HLS_RUNNER_TOKEN must be at least 16 characters long")

    def _validate_cors(self) -> None:
        if self.CORS_ALLOW_CREDENTIALS and ("*" in self.CORS_ALLOW_ORIGINS):
            raise ValueError(
                "CORS_ALLOW_CREDENTIALS=true requires explicit CORS_ALLOW_ORIGINS, not *"
            )


config = get_config()


def is_pytest_run() -> bool:
    """True inside a pytest process, including collection."""
    return (
        os.getenv("PYTEST_CURRENT_TEST") is not None
        or "pytest" in sys.modules
        or any(os.path.basename(arg).startswith("pytest") for arg in sys.argv)
    )
