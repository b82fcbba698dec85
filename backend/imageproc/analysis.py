"""Image analysis: colours, transparency, format recommendation, quality estimate, metadata."""
import logging
from typing import Optional

from imageproc.conversion.codec import ImageCodec, Raster, get_codec, has_alpha
from imageproc.conversion.models import AnalysisResult, ImageBuffer
from imageproc.errors import DecodeError

logger = logging.getLogger("imageproc.analysis")

COLOR_VARIANT_OFFSET = 30
FALLBACK_PALETTE = ["#888888", "#666666", "#444444"]
LARGE_IMAGE_PIXELS = 1_000_000

# Bit depth per band for Pillow modes that are not 8-bit
_MODE_DEPTH = {"1": 1, "I;16": 16, "I;16B": 16, "I;16L": 16, "I": 32, "F": 32}


def _rgb(r: int, g: int, b: int) -> str:
    return f"rgb({r}, {g}, {b})"


def color_palette(dominant: tuple[int, int, int]) -> list[str]:
    """Dominant colour followed by four darker variants (one channel, then all channels, minus 30)."""
    r, g, b = dominant
    off = COLOR_VARIANT_OFFSET
    return [
        _rgb(r, g, b),
        _rgb(max(0, r - off), g, b),
        _rgb(r, max(0, g - off), b),
        _rgb(r, g, max(0, b - off)),
        _rgb(max(0, r - off), max(0, g - off), max(0, b - off)),
    ]


def recommend_format(buffer: ImageBuffer, has_transparency: bool) -> str:
    if has_transparency:
        return "png"
    if buffer.format == "gif":
        return "gif"
    if buffer.width * buffer.height > LARGE_IMAGE_PIXELS:
        return "jpeg"
    return "webp"


def estimate_quality(size: int, width: int, height: int) -> int:
    density = size / (width * height)
    if density > 3:
        return 95
    if density > 2:
        return 85
    if density > 1:
        return 75
    return 65


class AnalysisEngine:
    def __init__(self, codec: Optional[ImageCodec] = None):
        self.codec = codec or get_codec()

    def analyze_colors(self, raster: Raster) -> list[str]:
        try:
            return color_palette(self.codec.dominant_color(raster))
        except Exception as e:
            logger.warning("Color analysis failed: %s", e)
            return list(FALLBACK_PALETTE)

    def analyze(self, buffer: ImageBuffer) -> AnalysisResult:
        if buffer.width <= 0 or buffer.height <= 0:
            raise DecodeError(f"Invalid image dimensions: {buffer.width}x{buffer.height}")
        raster = self.codec.decode(buffer)
        has_transparency = buffer.has_alpha
        return AnalysisResult(
            colors=self.analyze_colors(raster),
            has_transparency=has_transparency,
            aspect_ratio=round(buffer.width / buffer.height, 2),
            recommended_format=recommend_format(buffer, has_transparency),
            estimated_quality=estimate_quality(buffer.size, buffer.width, buffer.height),
            metadata={
                "width": buffer.width,
                "height": buffer.height,
                "format": buffer.format,
                "size": buffer.size,
            },
        )

    def extract_metadata(self, buffer: ImageBuffer, filename: str, mimetype: str) -> dict:
        """Detailed metadata and per-channel statistics for the /metadata endpoint."""
        raster = self.codec.decode(buffer)
        dpi = raster.info.get("dpi")
        orientation = raster.getexif().get(0x0112)
        channels = self.codec.channel_stats(raster)
        alpha = has_alpha(raster)
        is_opaque = True
        if alpha and raster.mode in ("RGBA", "LA"):
            is_opaque = raster.getchannel("A").getextrema()[0] == 255
        elif alpha:
            is_opaque = False
        try:
            dominant = dict(zip("rgb", self.codec.dominant_color(raster)))
        except Exception as e:
            logger.warning("Dominant color extraction failed: %s", e)
            dominant = None
        return {
            "filename": filename,
            "filesize": buffer.size,
            "mimetype": mimetype,
            "dimensions": {"width": buffer.width, "height": buffer.height},
            "format": buffer.format,
            "space": raster.mode,
            "channels": len(raster.getbands()),
            "depth": _MODE_DEPTH.get(raster.mode, 8),
            "density": round(float(dpi[0])) if dpi else None,
            "hasProfile": bool(raster.info.get("icc_profile")),
            "hasAlpha": alpha,
            "orientation": orientation,
            "statistics": {
                "channels": channels,
                "isOpaque": is_opaque,
                "dominant": dominant,
            },
        }


_analysis_engine: Optional[AnalysisEngine] = None


def get_analysis_engine() -> AnalysisEngine:
    global _analysis_engine
    if _analysis_engine is None:
        _analysis_engine = AnalysisEngine()
    return _analysis_engine
