"""Shared fixtures.

TEMP_DIR is pointed at a throwaway directory before ``imageproc`` is imported,
because the config module reads it (and mounts it under /temp) at import time.
"""

import io
import os
import random
import tempfile

os.environ.setdefault("TEMP_DIR", tempfile.mkdtemp(prefix="imageproc-test-"))

import pytest
from PIL import Image

try:
    import cairosvg  # noqa: F401

    HAS_CAIRO = True
except (ImportError, OSError):
    HAS_CAIRO = False

requires_cairo = pytest.mark.skipif(not HAS_CAIRO, reason="cairosvg or libcairo unavailable")

SVG_BANNER = (
    b'<?xml version="1.0" encoding="UTF-8"?>\n'
    b'<svg xmlns="http://www.w3.org/2000/svg" width="40" height="20">'
    b'<rect width="40" height="20" fill="#c86432"/></svg>'
)


def make_image(
    width: int = 64,
    height: int = 48,
    fmt: str = "PNG",
    mode: str = "RGB",
    color=(200, 100, 50),
    noise: bool = False,
    seed: int = 1234,
    **save_kw,
) -> bytes:
    """Encode an in-memory test image. noise=True gives incompressible, photo-like content."""
    if noise:
        rnd = random.Random(seed)
        img = Image.frombytes("RGB", (width, height), rnd.randbytes(width * height * 3))
        if mode != "RGB":
            img = img.convert(mode)
    else:
        img = Image.new(mode, (width, height), color)
    buf = io.BytesIO()
    img.save(buf, format=fmt, **save_kw)
    return buf.getvalue()


@pytest.fixture
def image_bytes():
    return make_image


@pytest.fixture
def store(tmp_path):
    from imageproc.storage import TempArtifactStore

    return TempArtifactStore(directory=tmp_path / "artifacts", retention_seconds=600, interval_seconds=300)


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from imageproc.main import app

    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
