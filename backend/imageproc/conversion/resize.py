"""Resize policy: shrink-to-fit (aspect preserved, never enlarged) or exact fill."""
import logging
from typing import Optional, Tuple

logger = logging.getLogger("imageproc.resize")


def fit_inside(
    width: int,
    height: int,
    target_width: Optional[int] = None,
    target_height: Optional[int] = None,
) -> Tuple[int, int]:
    """
    Scale (width, height) to fit within target width and/or height, maintaining aspect ratio.
    If only one dimension is set, the other is computed from the image ratio.
    Never scales above the source size.
    """
    if target_width is None and target_height is None:
        return width, height
    if target_width is not None and target_height is not None:
        scale = min(target_width / width, target_height / height)
    elif target_width is not None:
        scale = target_width / width
    else:
        scale = target_height / height
    if scale >= 1:
        return width, height
    new_w = max(1, int(round(width * scale)))
    new_h = max(1, int(round(height * scale)))
    return new_w, new_h


def target_size(
    width: int,
    height: int,
    target_width: Optional[int],
    target_height: Optional[int],
    maintain_aspect_ratio: bool = True,
) -> Optional[Tuple[int, int]]:
    """
    Output dimensions for a source of (width, height), or None when no resize is needed.
    - maintain_aspect_ratio: fit inside the box without upscaling.
    - otherwise, with both dimensions given: exactly (target_width, target_height).
    """
    if target_width is None and target_height is None:
        return None
    if not maintain_aspect_ratio and target_width is not None and target_height is not None:
        size = (target_width, target_height)
    else:
        size = fit_inside(width, height, target_width, target_height)
    if size == (width, height):
        return None
    return size
