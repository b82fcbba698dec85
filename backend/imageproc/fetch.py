"""Download source images from remote URLs with size and time bounds."""
import logging
import time
from typing import Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from imageproc.config import (
    ALLOWED_SOURCE_FORMATS,
    URL_FETCH_MAX_BYTES,
    URL_FETCH_TIMEOUT,
    URL_FETCH_USER_AGENT,
)
from imageproc.conversion.codec import ImageCodec, get_codec
from imageproc.conversion.models import ImageBuffer
from imageproc.errors import FetchError, UnsupportedFileType

logger = logging.getLogger("imageproc.fetch")

CHUNK_SIZE = 64 * 1024
MIN_READ_TIMEOUT = 0.1


def _set_read_timeout(resp, seconds: float) -> None:
    """Bound the next socket read on an http.client response."""
    sock = getattr(getattr(resp, "fp", None), "raw", None)
    sock = getattr(sock, "_sock", None)
    if sock is not None:
        sock.settimeout(max(MIN_READ_TIMEOUT, seconds))


def download(url: str, timeout: float = URL_FETCH_TIMEOUT, max_bytes: int = URL_FETCH_MAX_BYTES) -> bytes:
    """Fetch url into memory. Raises FetchError on bad URL, HTTP error, timeout or oversize body."""
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        raise FetchError("Invalid URL")
    if parsed.scheme not in ("http", "https"):
        raise FetchError("Only http and https URLs are supported")
    max_mb = max_bytes // (1024 * 1024)
    req = Request(url, headers={"User-Agent": URL_FETCH_USER_AGENT})
    deadline = time.monotonic() + timeout
    try:
        with urlopen(req, timeout=timeout) as resp:
            length = resp.headers.get("Content-Length")
            if length and length.isdigit() and int(length) > max_bytes:
                raise FetchError(f"Remote file too large (max {max_mb} MB)")
            chunks = []
            total = 0
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise FetchError(f"Timed out downloading image after {timeout}s")
                _set_read_timeout(resp, remaining)
                # read1 returns as soon as any bytes arrive
                chunk = resp.read1(CHUNK_SIZE)
                if not chunk:
                    break
                total += len(chunk)
                if total > max_bytes:
                    raise FetchError(f"Remote file too large (max {max_mb} MB)")
                chunks.append(chunk)
    except FetchError:
        raise
    except TimeoutError as e:
        raise FetchError(f"Timed out downloading image after {timeout}s") from e
    except HTTPError as e:
        raise FetchError(f"Failed to download image from URL: HTTP {e.code}") from e
    except (URLError, OSError, ValueError) as e:
        logger.warning("URL download failed for %s: %s", url, e)
        reason = getattr(e, "reason", e)
        raise FetchError(f"Failed to download image from URL: {reason}") from e
    data = b"".join(chunks)
    logger.info("Downloaded %s bytes from %s", len(data), url)
    return data


def fetch_image(url: str, codec: Optional[ImageCodec] = None, **kwargs) -> ImageBuffer:
    """Download url and check it decodes to an accepted source format."""
    codec = codec or get_codec()
    buffer = codec.inspect(download(url, **kwargs))
    if buffer.format not in ALLOWED_SOURCE_FORMATS:
        raise UnsupportedFileType(f"Unsupported image format: {buffer.format}")
    return buffer
