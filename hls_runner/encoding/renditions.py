# hls_runner/encoding/renditions.py
"""Rendition planning: which rungs of the ladder a source can feed."""

from typing import Iterable, List

from hls_runner.encoding.errors import NoEligibleRenditionError
from hls_runner.encoding.options import LADDER, RenditionSpec


def plan(
    source_width: int, source_height: int, excluded: Iterable[RenditionSpec] = ()
) -> List[RenditionSpec]:
    """
    Select the renditions to encode for a source, highest first.

    A rung is kept when it does not upscale the source in either dimension and
    is not excluded. Exclusion matches on the exact (width, height) pair.

    Args:
        source_width: Source width in pixels
        source_height: Source height in pixels
        excluded: Renditions the caller opted out of

    Returns:
        list: Eligible renditions in ladder order (possibly empty)
    """
    excluded_sizes = {(spec.width, spec.height) for spec in excluded}
    return [
        spec
        for spec in LADDER
        if spec.width <= source_width
        and spec.height <= source_height
        and (spec.width, spec.height) not in excluded_sizes
    ]


def plan_or_raise(
    source_width: int, source_height: int, excluded: Iterable[RenditionSpec] = ()
) -> List[RenditionSpec]:
    """
    Same as ``plan`` but refuses an empty result.

    Raises:
        NoEligibleRenditionError: If no rendition remains
    """
    excluded = tuple(excluded)
    renditions = plan(source_width, source_height, excluded)
    if not renditions:
        raise NoEligibleRenditionError(
            details=f"source {source_width}x{source_height}, "
            f"excluded: {', '.join(spec.name for spec in excluded) or 'none'}"
        )
    return renditions


def options_for(source_width: int, source_height: int) -> List[RenditionSpec]:
    """Ladder entries a user may select or exclude for this source."""
    return plan(source_width, source_height)
