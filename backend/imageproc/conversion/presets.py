"""Named size presets merged into a conversion request."""
import dataclasses
import logging
from typing import Mapping, Optional

from imageproc.config import PRESET_SIZES
from imageproc.conversion.models import ConversionRequest

logger = logging.getLogger("imageproc.presets")


def resolve_preset(
    request: ConversionRequest,
    presets: Optional[Mapping[str, tuple[int, int]]] = None,
) -> ConversionRequest:
    """Return request with width/height taken from its preset. Unknown presets leave it unchanged."""
    presets = PRESET_SIZES if presets is None else presets
    if not request.preset:
        return request
    dims = presets.get(request.preset)
    if dims is None:
        logger.debug("Ignoring unknown preset %s", request.preset)
        return request
    logger.info("Using preset: %s (%sx%s)", request.preset, dims[0], dims[1])
    return dataclasses.replace(request, width=dims[0], height=dims[1])
