# hls_runner/__init__.py
"""
HLS Runner Package.
"""

from hls_runner.__version__ import (
    __description__,
    __license__,
    __version__,
    __version_info__,
)

__all__ = [
    "__version__",
    "__version_info__",
    "__license__",
    "__description__",
]
