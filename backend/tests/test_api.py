"""HTTP surface, exercised through FastAPI's TestClient."""

import json

import pytest

from imageproc import main
from imageproc.api import routes
from imageproc.conversion.service import get_conversion_engine
from imageproc.main import app
from imageproc.storage import get_artifact_store

from conftest import SVG_BANNER, make_image, requires_cairo


def png_upload(name="pic.png", **kw):
    return {"file": (name, make_image(**kw), "image/png")}


class SpyEngine:
    def __init__(self):
        self.calls = 0

    def convert(self, *args, **kwargs):
        self.calls += 1
        raise AssertionError("engine should not be reached")


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert isinstance(body["tempFiles"], int)
    assert body["uptime"] >= 0
    assert body["memory"]["maxRss"] > 0
    assert body["timestamp"]


def test_presets_and_formats(client):
    presets = client.get("/api/presets").json()
    assert presets["instagram"] == [1080, 1080]
    formats = client.get("/api/formats").json()
    assert formats["output"] == ["jpeg", "png", "webp", "avif", "tiff"]


def test_convert_image_and_download(client):
    resp = client.post(
        "/api/convert-image",
        files=png_upload(width=200, height=100),
        data={"outputFormat": "webp", "width": "100", "quality": "70"},
    )
    assert resp.status_code == 200
    body = resp.json()
    converted = body["convertedFile"]
    assert converted["type"] == "image/webp"
    assert (converted["width"], converted["height"]) == (100, 50)
    assert body["originalFile"]["name"] == "pic.png"
    assert (body["originalFile"]["width"], body["originalFile"]["height"]) == (200, 100)
    assert body["finalQuality"] == 70
    assert converted["url"].endswith("/temp/" + converted["name"])

    download = client.get(converted["url"])
    assert download.status_code == 200
    assert len(download.content) == converted["size"]


def test_convert_image_with_preset(client):
    resp = client.post(
        "/api/convert-image",
        files=png_upload(width=2000, height=1000),
        data={"outputFormat": "jpg", "preset": "facebook"},
    )
    assert resp.status_code == 200
    converted = resp.json()["convertedFile"]
    assert converted["name"].endswith(".jpeg")
    assert converted["width"] <= 1200 and converted["height"] <= 630


def test_missing_output_format_never_reaches_engine(client):
    spy = SpyEngine()
    app.dependency_overrides[get_conversion_engine] = lambda: spy
    resp = client.post("/api/convert-image", files=png_upload(), data={"quality": "80"})
    assert resp.status_code == 400
    assert "Output format" in resp.json()["error"]
    assert spy.calls == 0


def test_unknown_output_format(client):
    resp = client.post("/api/convert-image", files=png_upload(), data={"outputFormat": "bmp"})
    assert resp.status_code == 400
    assert "error" in resp.json()


def test_unsupported_upload_type(client):
    resp = client.post(
        "/api/convert-image",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        data={"outputFormat": "png"},
    )
    assert resp.status_code == 400
    assert "Unsupported file type" in resp.json()["error"]


def test_oversize_upload(client, monkeypatch):
    monkeypatch.setattr(routes, "MAX_FILE_SIZE_BYTES", 100)
    resp = client.post("/api/convert-image", files=png_upload(noise=True), data={"outputFormat": "png"})
    assert resp.status_code == 413


def test_corrupt_single_upload(client):
    resp = client.post(
        "/api/convert-image",
        files={"file": ("bad.png", b"not really a png", "image/png")},
        data={"outputFormat": "png"},
    )
    assert resp.status_code == 400


def test_batch_isolates_failures(client):
    files = [
        ("files", ("a.png", make_image(40, 40), "image/png")),
        ("files", ("bad.jpg", b"garbage", "image/jpeg")),
        ("files", ("c.png", make_image(30, 10), "image/png")),
    ]
    resp = client.post(
        "/api/convert-batch",
        files=files,
        data={"settings": json.dumps({"outputFormat": "jpeg", "quality": 60})},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["totalProcessed"] == 2
    assert body["totalErrors"] == 1
    assert [r["status"] for r in body["results"]] == ["success", "failed", "success"]
    assert [r["originalFile"]["name"] for r in body["results"]] == ["a.png", "bad.jpg", "c.png"]
    assert body["errors"][0].startswith("bad.jpg: ")
    assert body["results"][0]["convertedFile"]["type"] == "image/jpeg"


def test_batch_with_form_fields(client):
    files = [("files", ("a.png", make_image(), "image/png"))]
    resp = client.post("/api/convert-batch", files=files, data={"outputFormat": "png"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["totalProcessed"] == 1
    assert "errors" not in body


def test_batch_malformed_settings(client):
    files = [("files", ("a.png", make_image(), "image/png"))]
    resp = client.post("/api/convert-batch", files=files, data={"settings": "{not json"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid settings JSON format"


def test_batch_without_output_format(client):
    files = [("files", ("a.png", make_image(), "image/png"))]
    resp = client.post("/api/convert-batch", files=files, data={"settings": json.dumps({"quality": 50})})
    assert resp.status_code == 400


def test_batch_too_many_files(client, monkeypatch):
    monkeypatch.setattr(routes, "MAX_FILES_PER_BATCH", 2)
    files = [("files", (f"{i}.png", make_image(), "image/png")) for i in range(3)]
    resp = client.post("/api/convert-batch", files=files, data={"outputFormat": "png"})
    assert resp.status_code == 413


def test_analyze_image(client):
    resp = client.post("/api/analyze-image", files=png_upload(width=400, height=200))
    assert resp.status_code == 200
    body = resp.json()
    assert len(body["colors"]) == 5
    assert body["hasTransparency"] is False
    assert body["aspectRatio"] == 2.0
    assert body["recommendedFormat"] == "webp"
    assert body["estimatedQuality"] in (65, 75, 85, 95)
    assert body["metadata"]["format"] == "png"


def test_metadata(client):
    resp = client.post("/api/metadata", files=png_upload(width=12, height=8))
    assert resp.status_code == 200
    body = resp.json()
    assert body["filename"] == "pic.png"
    assert body["mimetype"] == "image/png"
    assert body["dimensions"] == {"width": 12, "height": 8}
    assert body["channels"] == 3


@pytest.mark.parametrize("enhancement,echo", [("sharpen", "sharpen"), (None, "auto")])
def test_enhance_image(client, enhancement, echo):
    data = {"enhancement": enhancement} if enhancement else {}
    resp = client.post("/api/enhance-image", files=png_upload(width=20, height=10), data=data)
    assert resp.status_code == 200
    body = resp.json()
    assert body["enhancement"] == echo
    assert body["enhancedFile"]["name"].startswith("enhanced_")
    assert body["enhancedFile"]["type"] == "image/png"
    assert (body["enhancedFile"]["width"], body["enhancedFile"]["height"]) == (20, 10)


def test_convert_from_url_requires_url(client):
    resp = client.post("/api/convert-from-url", json={"outputFormat": "png"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "imageUrl is required"


def test_convert_from_url_unreachable_leaves_no_artifact(client):
    before = get_artifact_store().count()
    resp = client.post(
        "/api/convert-from-url",
        json={"imageUrl": "http://127.0.0.1:9/missing.png", "outputFormat": "webp"},
    )
    assert resp.status_code == 400
    assert "error" in resp.json()
    assert get_artifact_store().count() == before


def test_convert_from_url(client, monkeypatch):
    source = make_image(60, 40, fmt="JPEG")
    monkeypatch.setattr("imageproc.fetch.download", lambda url, **kw: source)
    resp = client.post(
        "/api/convert-from-url",
        json={"imageUrl": "https://images.test/a.jpg", "outputFormat": "png", "width": 30},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["sourceUrl"] == "https://images.test/a.jpg"
    assert body["originalFile"]["type"] == "image/jpeg"
    assert body["convertedFile"]["name"].startswith("url_")
    assert (body["convertedFile"]["width"], body["convertedFile"]["height"]) == (30, 20)


def test_unknown_route_is_json_error(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert "error" in resp.json()


@requires_cairo
def test_convert_svg_upload(client):
    resp = client.post(
        "/api/convert-image",
        files={"file": ("banner.svg", SVG_BANNER, "image/svg+xml")},
        data={"outputFormat": "png"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert (body["originalFile"]["width"], body["originalFile"]["height"]) == (40, 20)
    assert body["convertedFile"]["type"] == "image/png"
    assert (body["convertedFile"]["width"], body["convertedFile"]["height"]) == (40, 20)


@requires_cairo
def test_analyze_svg_upload(client):
    resp = client.post("/api/analyze-image", files={"file": ("banner.svg", SVG_BANNER, "image/svg+xml")})
    assert resp.status_code == 200
    body = resp.json()
    assert body["aspectRatio"] == 2.0
    assert body["metadata"]["format"] == "svg"
    assert body["colors"][0] == "rgb(200, 104, 56)"


@pytest.mark.parametrize("exc", [SystemExit(1), RuntimeError("bind failed")])
def test_fatal_server_error_purges_artifacts(monkeypatch, store, exc):
    def failing_run(*args, **kwargs):
        raise exc

    store.save(b"leftover", "png")
    monkeypatch.setattr("uvicorn.run", failing_run)
    monkeypatch.setattr(main, "get_artifact_store", lambda: store)
    with pytest.raises(type(exc)):
        main.run()
    assert store.count() == 0
