"""Conversion request/response models."""
from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from typing import Any, Mapping, Optional, Union

from imageproc.config import DEFAULT_QUALITY
from imageproc.errors import UnsupportedFormat, ValidationError


class OutputFormat(str, Enum):
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    AVIF = "avif"
    TIFF = "tiff"

    @property
    def mime_type(self) -> str:
        return f"image/{self.value}"

    @classmethod
    def parse(cls, value: Optional[str]) -> "OutputFormat":
        if value is None or not str(value).strip():
            raise ValidationError("Output format is required")
        name = str(value).strip().lower()
        if name == "jpg":
            name = "jpeg"
        try:
            return cls(name)
        except ValueError:
            raise UnsupportedFormat(f"Unsupported output format: {value}") from None


@dataclass(frozen=True)
class ImageBuffer:
    """Encoded image bytes plus the metadata read from them."""

    data: bytes = field(repr=False)
    width: int
    height: int
    format: str
    has_alpha: bool = False

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def aspect_ratio(self) -> Fraction:
        return Fraction(self.width, self.height)


def _parse_int(value: Any, name: str) -> Optional[int]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValidationError(f"{name} must be an integer") from None


def _parse_flag(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() != "false"


@dataclass(frozen=True)
class ConversionRequest:
    output_format: OutputFormat
    quality: int = DEFAULT_QUALITY
    width: Optional[int] = None
    height: Optional[int] = None
    maintain_aspect_ratio: bool = True
    target_size_kb: Optional[int] = None
    preset: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.output_format, OutputFormat):
            raise UnsupportedFormat(f"Unsupported output format: {self.output_format}")
        if not 1 <= self.quality <= 100:
            raise ValidationError("quality must be between 1 and 100")
        for name in ("width", "height", "target_size_kb"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValidationError(f"{name} must be a positive integer")

    @classmethod
    def from_fields(cls, fields: Mapping[str, Any]) -> "ConversionRequest":
        """Build a request from form fields or a decoded settings object (camelCase keys)."""
        quality = _parse_int(fields.get("quality"), "quality")
        preset = fields.get("preset")
        return cls(
            output_format=OutputFormat.parse(fields.get("outputFormat")),
            quality=DEFAULT_QUALITY if quality is None else quality,
            width=_parse_int(fields.get("width"), "width"),
            height=_parse_int(fields.get("height"), "height"),
            maintain_aspect_ratio=_parse_flag(fields.get("maintainAspectRatio")),
            target_size_kb=_parse_int(fields.get("targetSizeKB"), "targetSizeKB"),
            preset=str(preset).strip() or None if preset else None,
        )


@dataclass(frozen=True)
class ConversionResult:
    output: ImageBuffer
    original_size: int
    original_width: int
    original_height: int
    compression_ratio: float
    final_quality: int
    fit_attempts: int = 0
    handle: Optional[str] = None


@dataclass(frozen=True)
class BatchItemSuccess:
    filename: str
    result: ConversionResult


@dataclass(frozen=True)
class BatchItemFailure:
    filename: str
    error: str
    size: Optional[int] = None


BatchItemResult = Union[BatchItemSuccess, BatchItemFailure]


@dataclass(frozen=True)
class BatchReport:
    items: list[BatchItemResult]

    @property
    def total_processed(self) -> int:
        return sum(1 for item in self.items if isinstance(item, BatchItemSuccess))

    @property
    def total_errors(self) -> int:
        return sum(1 for item in self.items if isinstance(item, BatchItemFailure))

    @property
    def errors(self) -> list[str]:
        return [f"{item.filename}: {item.error}" for item in self.items if isinstance(item, BatchItemFailure)]


@dataclass(frozen=True)
class AnalysisResult:
    colors: list[str]
    has_transparency: bool
    aspect_ratio: float
    recommended_format: str
    estimated_quality: int
    metadata: dict[str, Any]
