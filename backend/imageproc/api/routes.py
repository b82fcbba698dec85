"""API routes for analysis, conversion, batch, enhancement and metadata."""
import asyncio
import dataclasses
import json
import logging
import resource
import time
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, File, Form, Request, UploadFile

from imageproc.analysis import AnalysisEngine, get_analysis_engine
from imageproc.batch import BatchOrchestrator, get_batch_orchestrator
from imageproc.config import (
    ALLOWED_UPLOAD_MIME_TYPES,
    MAX_FILE_SIZE_BYTES,
    MAX_FILES_PER_BATCH,
    PRESET_SIZES,
)
from imageproc.conversion.codec import get_codec
from imageproc.conversion.models import (
    BatchItemSuccess,
    ConversionRequest,
    ConversionResult,
    ImageBuffer,
    OutputFormat,
)
from imageproc.conversion.presets import resolve_preset
from imageproc.conversion.service import ENHANCEMENTS, ConversionEngine, get_conversion_engine
from imageproc.errors import PayloadTooLarge, UnsupportedFileType, ValidationError
from imageproc.fetch import fetch_image
from imageproc.storage import TempArtifactStore, get_artifact_store

logger = logging.getLogger("imageproc.api")
router = APIRouter(prefix="/api", tags=["images"])

_started_at = time.monotonic()


async def _read_upload(file: UploadFile, max_bytes: Optional[int] = None) -> bytes:
    """Check the MIME type and read the upload into memory, enforcing the size cap."""
    max_bytes = max_bytes or MAX_FILE_SIZE_BYTES
    mimetype = (file.content_type or "").lower()
    if mimetype not in ALLOWED_UPLOAD_MIME_TYPES:
        raise UnsupportedFileType(f"Unsupported file type: {file.content_type}")
    max_mb = max_bytes // (1024 * 1024)
    chunks = []
    total = 0
    while chunk := await file.read(1024 * 1024):
        total += len(chunk)
        if total > max_bytes:
            raise PayloadTooLarge(f"File too large: {file.filename} (max {max_mb} MB)")
        chunks.append(chunk)
    return b"".join(chunks)


def _inspect(data: bytes) -> ImageBuffer:
    return get_codec().inspect(data)


def _artifact_url(request: Request, name: str) -> str:
    return str(request.url_for("temp", path=name))


def _converted_file(name: str, buffer: ImageBuffer, mime_type: str, url: str) -> dict:
    return {
        "name": name,
        "size": buffer.size,
        "type": mime_type,
        "width": buffer.width,
        "height": buffer.height,
        "url": url,
    }


def _conversion_payload(
    request: Request,
    result: ConversionResult,
    output_format: OutputFormat,
    original_file: dict,
) -> dict:
    return {
        "originalFile": {
            **original_file,
            "size": result.original_size,
            "width": result.original_width,
            "height": result.original_height,
        },
        "convertedFile": _converted_file(
            result.handle,
            result.output,
            output_format.mime_type,
            _artifact_url(request, result.handle),
        ),
        "compressionRatio": result.compression_ratio,
        "finalQuality": result.final_quality,
    }


def _convert_and_store(
    engine: ConversionEngine,
    store: TempArtifactStore,
    buffer: ImageBuffer,
    options: ConversionRequest,
    prefix: str = "",
) -> ConversionResult:
    result = engine.convert(buffer, resolve_preset(options))
    handle = store.save(result.output.data, options.output_format.value, prefix=prefix)
    return dataclasses.replace(result, handle=handle)


def _parse_settings(settings: Optional[str], fields: dict[str, Any]) -> ConversionRequest:
    """Batch settings come either as a JSON blob or as discrete form fields."""
    if settings:
        try:
            decoded = json.loads(settings)
        except json.JSONDecodeError:
            raise ValidationError("Invalid settings JSON format") from None
        if not isinstance(decoded, dict):
            raise ValidationError("Invalid settings JSON format")
        fields = decoded
    if not fields.get("outputFormat"):
        raise ValidationError("Settings with outputFormat are required")
    return ConversionRequest.from_fields(fields)


@router.get("/health")
def health(store: TempArtifactStore = Depends(get_artifact_store)):
    usage = resource.getrusage(resource.RUSAGE_SELF)
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "tempFiles": store.count(),
        "uptime": round(time.monotonic() - _started_at, 3),
        "memory": {
            "maxRss": usage.ru_maxrss * 1024,
            "userCpuSeconds": round(usage.ru_utime, 3),
            "systemCpuSeconds": round(usage.ru_stime, 3),
        },
    }


@router.get("/formats")
def get_formats():
    return {
        "input": sorted(ALLOWED_UPLOAD_MIME_TYPES),
        "output": [f.value for f in OutputFormat],
        "enhancements": list(ENHANCEMENTS),
    }


@router.get("/presets")
def get_presets():
    """Size presets (name -> [width, height])."""
    return {name: list(dims) for name, dims in PRESET_SIZES.items()}


@router.post("/analyze-image")
async def analyze_image(
    file: UploadFile = File(...),
    analysis: AnalysisEngine = Depends(get_analysis_engine),
):
    """Dominant colours, transparency, aspect ratio, recommended format and a quality estimate."""
    data = await _read_upload(file)
    logger.info("Analyzing file: %s (%s bytes)", file.filename, len(data))
    buffer = await asyncio.to_thread(_inspect, data)
    result = await asyncio.to_thread(analysis.analyze, buffer)
    logger.info("Analysis completed for %s", file.filename)
    return {
        "colors": result.colors,
        "hasTransparency": result.has_transparency,
        "aspectRatio": result.aspect_ratio,
        "recommendedFormat": result.recommended_format,
        "estimatedQuality": result.estimated_quality,
        "metadata": result.metadata,
    }


@router.post("/convert-image")
async def convert_image(
    request: Request,
    file: UploadFile = File(...),
    output_format: Optional[str] = Form(None, alias="outputFormat"),
    quality: Optional[str] = Form(None),
    width: Optional[str] = Form(None),
    height: Optional[str] = Form(None),
    maintain_aspect_ratio: Optional[str] = Form(None, alias="maintainAspectRatio"),
    target_size_kb: Optional[str] = Form(None, alias="targetSizeKB"),
    preset: Optional[str] = Form(None),
    engine: ConversionEngine = Depends(get_conversion_engine),
    store: TempArtifactStore = Depends(get_artifact_store),
):
    """Convert one image. Form fields: outputFormat (required), quality, width, height, maintainAspectRatio, targetSizeKB, preset."""
    options = ConversionRequest.from_fields({
        "outputFormat": output_format,
        "quality": quality,
        "width": width,
        "height": height,
        "maintainAspectRatio": maintain_aspect_ratio,
        "targetSizeKB": target_size_kb,
        "preset": preset,
    })
    data = await _read_upload(file)
    logger.info("Converting: %s to %s", file.filename, options.output_format.value)
    buffer = await asyncio.to_thread(_inspect, data)
    result = await asyncio.to_thread(_convert_and_store, engine, store, buffer, options)
    logger.info("Conversion completed: %s bytes -> %s bytes", result.original_size, result.output.size)
    return _conversion_payload(
        request, result, options.output_format,
        {"name": file.filename, "type": file.content_type},
    )


@router.post("/convert-batch")
async def convert_batch(
    request: Request,
    files: list[UploadFile] = File(...),
    settings: Optional[str] = Form(None),
    output_format: Optional[str] = Form(None, alias="outputFormat"),
    quality: Optional[str] = Form(None),
    width: Optional[str] = Form(None),
    height: Optional[str] = Form(None),
    maintain_aspect_ratio: Optional[str] = Form(None, alias="maintainAspectRatio"),
    target_size_kb: Optional[str] = Form(None, alias="targetSizeKB"),
    preset: Optional[str] = Form(None),
    orchestrator: BatchOrchestrator = Depends(get_batch_orchestrator),
    store: TempArtifactStore = Depends(get_artifact_store),
):
    """Convert up to MAX_FILES_PER_BATCH images with shared settings (JSON `settings` or form fields)."""
    if not files:
        raise ValidationError("No files provided")
    if len(files) > MAX_FILES_PER_BATCH:
        raise PayloadTooLarge(f"Too many files (max {MAX_FILES_PER_BATCH} per batch)")
    options = _parse_settings(settings, {
        "outputFormat": output_format,
        "quality": quality,
        "width": width,
        "height": height,
        "maintainAspectRatio": maintain_aspect_ratio,
        "targetSizeKB": target_size_kb,
        "preset": preset,
    })
    items = [(file.filename or "", await _read_upload(file)) for file in files]
    report = await asyncio.to_thread(orchestrator.run, items, options, store)

    results = []
    for file, item in zip(files, report.items):
        if isinstance(item, BatchItemSuccess):
            payload = _conversion_payload(
                request, item.result, options.output_format,
                {"name": item.filename, "type": file.content_type},
            )
            payload["status"] = "success"
        else:
            payload = {
                "originalFile": {"name": item.filename, "size": item.size, "type": file.content_type},
                "status": "failed",
                "error": item.error,
            }
        results.append(payload)
    response = {
        "results": results,
        "totalProcessed": report.total_processed,
        "totalErrors": report.total_errors,
    }
    if report.errors:
        response["errors"] = report.errors
    return response


@router.post("/enhance-image")
async def enhance_image(
    request: Request,
    file: UploadFile = File(...),
    enhancement: Optional[str] = Form(None, description="sharpen | denoise | brighten | contrast | auto"),
    engine: ConversionEngine = Depends(get_conversion_engine),
    store: TempArtifactStore = Depends(get_artifact_store),
):
    """Apply a named enhancement; output is always PNG."""
    data = await _read_upload(file)
    buffer = await asyncio.to_thread(_inspect, data)
    enhanced = await asyncio.to_thread(engine.enhance, buffer, enhancement)
    name = await asyncio.to_thread(store.save, enhanced.data, OutputFormat.PNG.value, "enhanced_")
    logger.info("Enhancement completed: %s", enhancement or "auto")
    return {
        "originalFile": {
            "name": file.filename,
            "size": buffer.size,
            "width": buffer.width,
            "height": buffer.height,
        },
        "enhancedFile": _converted_file(name, enhanced, OutputFormat.PNG.mime_type, _artifact_url(request, name)),
        "enhancement": enhancement or "auto",
    }


@router.post("/metadata")
async def image_metadata(
    file: UploadFile = File(...),
    analysis: AnalysisEngine = Depends(get_analysis_engine),
):
    """Detailed metadata and per-channel statistics."""
    data = await _read_upload(file)
    buffer = await asyncio.to_thread(_inspect, data)
    metadata = await asyncio.to_thread(analysis.extract_metadata, buffer, file.filename, file.content_type)
    logger.info("Metadata extracted for: %s", file.filename)
    return metadata


@router.post("/convert-from-url")
async def convert_from_url(
    request: Request,
    payload: dict = Body(...),
    engine: ConversionEngine = Depends(get_conversion_engine),
    store: TempArtifactStore = Depends(get_artifact_store),
):
    """Download an image (30s timeout, 10 MB cap) and convert it. Body: imageUrl, outputFormat and conversion options."""
    image_url = str(payload.get("imageUrl") or "").strip()
    if not image_url:
        raise ValidationError("imageUrl is required")
    options = ConversionRequest.from_fields(payload)
    logger.info("Downloading image from: %s", image_url)
    buffer = await asyncio.to_thread(fetch_image, image_url)
    result = await asyncio.to_thread(_convert_and_store, engine, store, buffer, options, "url_")
    logger.info("URL conversion completed: %s bytes -> %s bytes", result.original_size, result.output.size)
    response = {"sourceUrl": image_url}
    response.update(_conversion_payload(
        request, result, options.output_format,
        {"type": f"image/{buffer.format}"},
    ))
    return response
