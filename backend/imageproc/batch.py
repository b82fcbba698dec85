"""Batch conversion: runs the engine over many inputs, isolating per-item failures."""
import dataclasses
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Sequence

from imageproc.config import MAX_WORKERS
from imageproc.conversion.models import (
    BatchItemFailure,
    BatchItemResult,
    BatchItemSuccess,
    BatchReport,
    ConversionRequest,
    OutputFormat,
)
from imageproc.conversion.presets import resolve_preset
from imageproc.conversion.service import ConversionEngine, get_conversion_engine
from imageproc.errors import ImageServiceError, ValidationError
from imageproc.storage import TempArtifactStore

logger = logging.getLogger("imageproc.batch")

BatchItem = tuple[str, bytes]


class BatchOrchestrator:
    """Converts (filename, bytes) items with shared settings; report order matches input order."""

    def __init__(
        self,
        engine: Optional[ConversionEngine] = None,
        max_workers: int = MAX_WORKERS,
    ):
        self.engine = engine or get_conversion_engine()
        self._executor = ThreadPoolExecutor(max_workers=max_workers)
        logger.info("BatchOrchestrator initialized with max_workers=%s", max_workers)

    def _process(
        self,
        filename: str,
        data: bytes,
        request: ConversionRequest,
        store: Optional[TempArtifactStore] = None,
    ) -> BatchItemResult:
        logger.info("Processing: %s", filename)
        try:
            result = self.engine.convert_bytes(data, request)
            if store is not None:
                handle = store.save(result.output.data, request.output_format.value)
                result = dataclasses.replace(result, handle=handle)
        except ImageServiceError as e:
            logger.error("Failed to process %s: %s", filename, e.message)
            return BatchItemFailure(filename=filename, error=e.message, size=len(data))
        except Exception as e:
            logger.exception("Unexpected failure processing %s: %s", filename, e)
            return BatchItemFailure(filename=filename, error=str(e), size=len(data))
        logger.info("Processed: %s (%s -> %s bytes)", filename, result.original_size, result.output.size)
        return BatchItemSuccess(filename=filename, result=result)

    def run(
        self,
        items: Sequence[BatchItem],
        request: Optional[ConversionRequest],
        store: Optional[TempArtifactStore] = None,
    ) -> BatchReport:
        """Convert every item, persisting outputs to store when given. Invalid settings fail the whole batch."""
        if not items:
            raise ValidationError("No files provided")
        if request is None or not isinstance(request.output_format, OutputFormat):
            raise ValidationError("Settings with outputFormat are required")
        # One preset resolution for the whole batch
        request = resolve_preset(request)
        logger.info("Processing %s files as %s", len(items), request.output_format.value)
        futures = [
            self._executor.submit(self._process, filename, data, request, store)
            for filename, data in items
        ]
        report = BatchReport(items=[f.result() for f in futures])
        logger.info(
            "Batch processing completed: %s successful, %s errors",
            report.total_processed, report.total_errors,
        )
        return report

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


# Singleton
_batch_orchestrator: Optional[BatchOrchestrator] = None


def get_batch_orchestrator() -> BatchOrchestrator:
    global _batch_orchestrator
    if _batch_orchestrator is None:
        _batch_orchestrator = BatchOrchestrator()
    return _batch_orchestrator


def shutdown_batch_orchestrator() -> None:
    global _batch_orchestrator
    if _batch_orchestrator is not None:
        _batch_orchestrator.shutdown()
        _batch_orchestrator = None
