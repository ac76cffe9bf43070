# hls_runner/encoding/tracks.py
"""
Subtitle track descriptors.

A track is either a stream embedded in the source container or a file supplied
by the user. Tracks are frozen; the default-language pass builds new values.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

LANGUAGE_NAMES: Dict[str, str] = {
    "en": "English",
    "eng": "English",
    "es": "Spanish",
    "spa": "Spanish",
    "fr": "French",
    "fra": "French",
    "de": "German",
    "deu": "German",
    "it": "Italian",
    "ita": "Italian",
    "pt": "Portuguese",
    "por": "Portuguese",
    "ja": "Japanese",
    "jpn": "Japanese",
    "ko": "Korean",
    "kor": "Korean",
    "zh": "Chinese",
    "zho": "Chinese",
    "ru": "Russian",
    "rus": "Russian",
    "ar": "Arabic",
    "ara": "Arabic",
    "hi": "Hindi",
    "hin": "Hindi",
    "und": "Unknown",
}


def language_display_name(code: str) -> str:
    """Human-readable name of a language code; unknown codes are upper-cased."""
    return LANGUAGE_NAMES.get(code.lower(), code.upper())


class SubtitleSource(str, Enum):
    EMBEDDED = "embedded"
    EXTERNAL = "external"


@dataclass(frozen=True)
class SubtitleTrack:
    """
    One subtitle track of a conversion.

    Attributes:
        index: Stream index in the source (embedded) or position in the track list (external)
        language: Language code, ``und`` when unknown
        name: Display name
        default: Advertised as the default track
        forced: Forced (burned-in style) track
        source: Where the track comes from
        codec: Source codec name or file format
        source_path: Path of the external file
    """

    index: int
    language: str
    name: str
    default: bool = False
    forced: bool = False
    source: SubtitleSource = SubtitleSource.EMBEDDED
    codec: Optional[str] = None
    source_path: Optional[str] = None

    @property
    def identity(self) -> str:
        return f"{self.source.value}_{self.index}_{self.language}"

    @property
    def _suffix(self) -> str:
        return f"{self.language}_forced" if self.forced else self.language

    @property
    def playlist_filename(self) -> str:
        return f"subtitles_{self._suffix}.m3u8"

    @property
    def segment_pattern(self) -> str:
        return f"subtitle_{self._suffix}_%04d.vtt"

    def as_dict(self) -> dict:
        return {
            "identity": self.identity,
            "index": self.index,
            "language": self.language,
            "name": self.name,
            "default": self.default,
            "forced": self.forced,
            "source": self.source.value,
            "codec": self.codec,
            "source_path": self.source_path,
            "playlist": self.playlist_filename,
        }
