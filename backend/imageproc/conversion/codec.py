"""Pillow-backed image codec: decode, encode per output format, resize, filters, statistics."""
import io
import logging
from typing import Callable, Protocol

from PIL import Image, ImageEnhance, ImageFilter, ImageOps, ImageStat

from imageproc.conversion.models import ImageBuffer, OutputFormat
from imageproc.errors import DecodeError, EncodeError

logger = logging.getLogger("imageproc.codec")

Raster = Image.Image

_ALPHA_MODES = {"RGBA", "LA", "PA", "RGBa", "La"}


class ImageCodec(Protocol):
    def inspect(self, data: bytes) -> ImageBuffer:
        """Read metadata from encoded bytes; raise DecodeError if unreadable."""
        ...

    def decode(self, buffer: ImageBuffer) -> Raster:
        ...

    def encode(self, raster: Raster, output_format: OutputFormat, quality: int) -> bytes:
        ...

    def resize(self, raster: Raster, width: int, height: int) -> Raster:
        ...

    def apply_filter(self, raster: Raster, name: str) -> Raster:
        ...

    def dominant_color(self, raster: Raster) -> tuple[int, int, int]:
        ...

    def channel_stats(self, raster: Raster) -> list[dict]:
        ...


def is_svg(data: bytes) -> bool:
    head = data[:1024].lstrip(b"\xef\xbb\xbf \t\r\n").lower()
    if head.startswith(b"<svg"):
        return True
    return head.startswith((b"<?xml", b"<!--", b"<!doctype svg")) and b"<svg" in head


def rasterize_svg(data: bytes) -> bytes:
    """Render SVG markup to PNG bytes at its intrinsic size."""
    import cairosvg

    return cairosvg.svg2png(bytestring=data)


def has_alpha(img: Raster) -> bool:
    if img.mode in _ALPHA_MODES:
        return True
    return "transparency" in img.info


def _flatten(img: Raster, background=(255, 255, 255)) -> Raster:
    """Composite transparency onto a solid background, returning RGB."""
    if img.mode == "RGB":
        return img
    if has_alpha(img):
        rgba = img.convert("RGBA")
        out = Image.new("RGB", rgba.size, background)
        out.paste(rgba, mask=rgba.getchannel("A"))
        return out
    return img.convert("RGB")


def _rgb_or_rgba(img: Raster) -> Raster:
    if img.mode in ("RGB", "RGBA"):
        return img
    return img.convert("RGBA" if has_alpha(img) else "RGB")


class CodecAdapter:
    """Encodes a raster into one output format. Formats without a quality axis ignore it."""

    output_format: OutputFormat
    pil_format: str

    def prepare(self, raster: Raster) -> Raster:
        return raster

    def save_options(self, quality: int) -> dict:
        return {}

    def encode(self, raster: Raster, quality: int) -> bytes:
        out = io.BytesIO()
        try:
            self.prepare(raster).save(out, format=self.pil_format, **self.save_options(quality))
        except Exception as e:
            raise EncodeError(f"Failed to encode {self.output_format.value}: {e}") from e
        return out.getvalue()


class JpegAdapter(CodecAdapter):
    output_format = OutputFormat.JPEG
    pil_format = "JPEG"

    def prepare(self, raster):
        if raster.mode in ("L", "CMYK"):
            return raster
        return _flatten(raster)

    def save_options(self, quality):
        return {"quality": quality, "optimize": True, "progressive": True}


class PngAdapter(CodecAdapter):
    output_format = OutputFormat.PNG
    pil_format = "PNG"

    def prepare(self, raster):
        if raster.mode in ("CMYK", "YCbCr", "LAB", "HSV"):
            return raster.convert("RGB")
        return raster

    def save_options(self, quality):
        return {"optimize": True}


class WebpAdapter(CodecAdapter):
    output_format = OutputFormat.WEBP
    pil_format = "WEBP"

    def prepare(self, raster):
        return _rgb_or_rgba(raster)

    def save_options(self, quality):
        return {"quality": quality, "method": 4}


class AvifAdapter(CodecAdapter):
    output_format = OutputFormat.AVIF
    pil_format = "AVIF"

    def prepare(self, raster):
        return _rgb_or_rgba(raster)

    def save_options(self, quality):
        return {"quality": quality}


class TiffAdapter(CodecAdapter):
    output_format = OutputFormat.TIFF
    pil_format = "TIFF"

    def save_options(self, quality):
        return {"compression": "tiff_lzw"}


CODEC_ADAPTERS: dict[OutputFormat, CodecAdapter] = {
    adapter.output_format: adapter
    for adapter in (JpegAdapter(), PngAdapter(), WebpAdapter(), AvifAdapter(), TiffAdapter())
}


def _on_color_bands(img: Raster, fn: Callable[[Raster], Raster]) -> Raster:
    """Run fn on the RGB bands only and re-attach the alpha channel, if any."""
    if has_alpha(img):
        rgba = img.convert("RGBA")
        out = fn(rgba.convert("RGB"))
        out.putalpha(rgba.getchannel("A"))
        return out
    return fn(img if img.mode in ("RGB", "L") else img.convert("RGB"))


FILTERS: dict[str, Callable[[Raster], Raster]] = {
    "sharpen": lambda img: img.filter(ImageFilter.UnsharpMask(radius=2, percent=200, threshold=2)),
    "denoise": lambda img: img.filter(ImageFilter.MedianFilter(3)),
    "brighten": lambda img: ImageEnhance.Brightness(img).enhance(1.2),
    "contrast": lambda img: ImageEnhance.Color(img).enhance(1.1).filter(ImageFilter.SHARPEN),
    "auto": lambda img: ImageOps.autocontrast(img).filter(
        ImageFilter.UnsharpMask(radius=1.5, percent=150, threshold=1)
    ),
    "normalize": ImageOps.autocontrast,
}
DEFAULT_FILTER = "normalize"


class PillowCodec:
    """ImageCodec implementation on top of Pillow."""

    def inspect(self, data: bytes) -> ImageBuffer:
        img = self._open(data)
        return ImageBuffer(
            data=data,
            width=img.width,
            height=img.height,
            format=(img.format or "unknown").lower(),
            has_alpha=has_alpha(img),
        )

    def decode(self, buffer: ImageBuffer) -> Raster:
        return self._open(buffer.data)

    @staticmethod
    def _open(data: bytes) -> Raster:
        svg = is_svg(data)
        try:
            if svg:
                data = rasterize_svg(data)
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                fmt = "SVG" if svg else img.format
                raster = img.copy()
        except Exception as e:
            raise DecodeError(f"Failed to read image: {e}") from e
        # copy() drops the format tag
        raster.format = fmt
        return raster

    def encode(self, raster: Raster, output_format: OutputFormat, quality: int) -> bytes:
        return CODEC_ADAPTERS[output_format].encode(raster, quality)

    def resize(self, raster: Raster, width: int, height: int) -> Raster:
        if raster.mode in ("P", "1"):
            raster = _rgb_or_rgba(raster)
        return raster.resize((width, height), Image.Resampling.LANCZOS)

    def apply_filter(self, raster: Raster, name: str) -> Raster:
        fn = FILTERS.get(name) or FILTERS[DEFAULT_FILTER]
        return _on_color_bands(raster, fn)

    def dominant_color(self, raster: Raster) -> tuple[int, int, int]:
        """Most populated bin of a 16x16x16 RGB histogram, reported as the bin centre."""
        rgb = raster.convert("RGB")
        rgb.thumbnail((256, 256))
        binned = ImageOps.posterize(rgb, 4)
        colors = binned.getcolors(maxcolors=16 ** 3)
        if not colors:
            raise ValueError("empty histogram")
        _, (r, g, b) = max(colors, key=lambda c: c[0])
        return r + 8, g + 8, b + 8

    def channel_stats(self, raster: Raster) -> list[dict]:
        stat = ImageStat.Stat(raster if raster.mode not in ("P", "1") else _rgb_or_rgba(raster))
        return [
            {"min": lo, "max": hi, "mean": round(mean, 4), "stdev": round(stdev, 4)}
            for (lo, hi), mean, stdev in zip(stat.extrema, stat.mean, stat.stddev)
        ]


_codec = PillowCodec()


def get_codec() -> PillowCodec:
    return _codec
