"""Conversion engine: resize, encode and size-fit a single image."""
import logging
from typing import Optional

from imageproc.conversion.codec import ImageCodec, Raster, get_codec
from imageproc.conversion.models import ConversionRequest, ConversionResult, ImageBuffer, OutputFormat
from imageproc.conversion.resize import target_size
from imageproc.errors import UnsupportedFormat

logger = logging.getLogger("imageproc.engine")

QUALITY_STEP = 15
QUALITY_FLOOR = 10
MAX_FIT_ATTEMPTS = 5
MIN_QUALITY = 1

ENHANCEMENTS = ("sharpen", "denoise", "brighten", "contrast", "auto")


class ConversionEngine:
    """Turns an input ImageBuffer and a ConversionRequest into a new ImageBuffer. No I/O."""

    def __init__(self, codec: Optional[ImageCodec] = None):
        self.codec = codec or get_codec()

    def resize_stage(self, raster: Raster, request: ConversionRequest) -> Raster:
        size = target_size(
            raster.width,
            raster.height,
            request.width,
            request.height,
            request.maintain_aspect_ratio,
        )
        if size is None:
            return raster
        logger.debug("Resizing %sx%s -> %sx%s", raster.width, raster.height, *size)
        return self.codec.resize(raster, *size)

    def encode_stage(self, raster: Raster, output_format: OutputFormat, quality: int) -> ImageBuffer:
        data = self.codec.encode(raster, output_format, quality)
        return self.codec.inspect(data)

    def fit_stage(
        self,
        raster: Raster,
        encoded: ImageBuffer,
        request: ConversionRequest,
    ) -> tuple[ImageBuffer, int, int]:
        """Lower quality in fixed steps until the output fits target_size_kb. Returns (buffer, quality, attempts)."""
        quality = request.quality
        attempts = 0
        if not request.target_size_kb:
            return encoded, quality, attempts
        limit = request.target_size_kb * 1024
        used = quality
        while encoded.size > limit and quality > QUALITY_FLOOR and attempts < MAX_FIT_ATTEMPTS:
            quality -= QUALITY_STEP
            attempts += 1
            used = max(MIN_QUALITY, quality)
            encoded = self.encode_stage(raster, request.output_format, used)
            logger.debug("Size fitting attempt %s: quality=%s size=%s", attempts, used, encoded.size)
        if encoded.size > limit:
            logger.info(
                "Target %sKB not reached after %s attempts (%s bytes)",
                request.target_size_kb, attempts, encoded.size,
            )
        return encoded, used, attempts

    def convert(self, buffer: ImageBuffer, request: ConversionRequest) -> ConversionResult:
        if not isinstance(request.output_format, OutputFormat):
            raise UnsupportedFormat(f"Unsupported output format: {request.output_format}")
        raster = self.codec.decode(buffer)
        raster = self.resize_stage(raster, request)
        encoded = self.encode_stage(raster, request.output_format, request.quality)
        encoded, final_quality, attempts = self.fit_stage(raster, encoded, request)
        ratio = round(buffer.size / encoded.size, 2)
        logger.info(
            "Converted %s %sx%s (%s bytes) -> %s %sx%s (%s bytes)",
            buffer.format, buffer.width, buffer.height, buffer.size,
            encoded.format, encoded.width, encoded.height, encoded.size,
        )
        return ConversionResult(
            output=encoded,
            original_size=buffer.size,
            original_width=buffer.width,
            original_height=buffer.height,
            compression_ratio=ratio,
            final_quality=final_quality,
            fit_attempts=attempts,
        )

    def convert_bytes(self, data: bytes, request: ConversionRequest) -> ConversionResult:
        return self.convert(self.codec.inspect(data), request)

    def enhance(self, buffer: ImageBuffer, enhancement: Optional[str] = None) -> ImageBuffer:
        """Apply a named enhancement and encode as PNG. Missing or unknown names only normalise."""
        raster = self.codec.apply_filter(self.codec.decode(buffer), enhancement or "")
        return self.encode_stage(raster, OutputFormat.PNG, 90)


# Singleton
_conversion_engine: Optional[ConversionEngine] = None


def get_conversion_engine() -> ConversionEngine:
    global _conversion_engine
    if _conversion_engine is None:
        _conversion_engine = ConversionEngine()
    return _conversion_engine
