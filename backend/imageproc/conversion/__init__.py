from .service import ConversionEngine, get_conversion_engine
from .models import ConversionRequest, ConversionResult, ImageBuffer, OutputFormat

__all__ = ["ConversionEngine", "get_conversion_engine", "ConversionRequest", "ConversionResult", "ImageBuffer", "OutputFormat"]
