"""Temp artifact store: content-named output files served under /temp and evicted by age."""
import asyncio
import hashlib
import logging
import time
import uuid
from pathlib import Path
from typing import Optional

from imageproc.config import CLEANUP_INTERVAL_SECONDS, TEMP_DIR, TEMP_RETENTION_SECONDS
from imageproc.errors import StorageError

logger = logging.getLogger("imageproc.storage")


class TempArtifactStore:
    """Owns the temp directory and the periodic eviction task."""

    def __init__(
        self,
        directory: Path = TEMP_DIR,
        retention_seconds: int = TEMP_RETENTION_SECONDS,
        interval_seconds: int = CLEANUP_INTERVAL_SECONDS,
    ):
        self.directory = Path(directory)
        self.retention_seconds = retention_seconds
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self.directory.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def generate_name(data: bytes, extension: str, prefix: str = "") -> str:
        digest = hashlib.sha256(data).hexdigest()[:16]
        return f"{prefix}{digest}_{uuid.uuid4().hex[:8]}.{extension.lower()}"

    def save(self, data: bytes, extension: str, prefix: str = "") -> str:
        """Write data under a generated unique name and return the name."""
        name = self.generate_name(data, extension, prefix)
        path = self.directory / name
        try:
            path.write_bytes(data)
        except OSError as e:
            logger.exception("Could not write artifact %s: %s", name, e)
            raise StorageError(f"Failed to store output: {e}") from e
        logger.debug("Stored artifact %s (%s bytes)", name, len(data))
        return name

    def path_for(self, name: str) -> Path:
        return self.directory / Path(name).name

    def count(self) -> int:
        if not self.directory.is_dir():
            return 0
        return sum(1 for p in self.directory.iterdir() if p.is_file())

    def sweep(self, now: Optional[float] = None) -> int:
        """Delete files whose mtime is older than the retention window. Returns how many were removed."""
        now = time.time() if now is None else now
        removed = 0
        for path in list(self.directory.iterdir()):
            try:
                if not path.is_file():
                    continue
                if now - path.stat().st_mtime > self.retention_seconds:
                    path.unlink()
                    removed += 1
                    logger.info("Cleaned up expired temp file: %s", path.name)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Could not remove %s: %s", path, e)
        return removed

    def purge(self) -> None:
        """Best-effort removal of every artifact, used on fatal shutdown."""
        for path in list(self.directory.iterdir()):
            try:
                if path.is_file():
                    path.unlink()
            except OSError as e:
                logger.warning("Could not remove %s: %s", path, e)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await asyncio.to_thread(self.sweep)
            except Exception as e:
                logger.exception("Error during cleanup: %s", e)

    def start(self) -> None:
        """Schedule the periodic sweep on the running event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())
            logger.info(
                "Temp cleanup scheduled every %ss (retention %ss) for %s",
                self.interval_seconds, self.retention_seconds, self.directory,
            )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()


_store: Optional[TempArtifactStore] = None


def get_artifact_store() -> TempArtifactStore:
    global _store
    if _store is None:
        _store = TempArtifactStore()
    return _store
