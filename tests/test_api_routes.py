"""Tests for FastAPI routes, request validation and backend fallback."""

from __future__ import annotations

import io
import time
from urllib.parse import unquote

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from PIL import Image
from pypdf import PdfReader

from tests.conftest import pdf_bytes, png_bytes
from tool_converter.api.routes import router
from tool_converter.config import Settings, settings_dependency
from tool_converter.errors import install_error_handlers
from tool_converter.pipeline.locator import ToolLocator, locator_dependency
from tool_converter.tools.background import BackgroundResult

FAIL = 'echo "boom" >&2\nexit 1\n'
WRITE_LAST_ARG = """\
for last; do :; done
printf '%%PDF-fake' > "$last"
"""


@pytest.fixture()
def make_client(test_settings: Settings, make_locator):
    def _make(locator: ToolLocator | None = None) -> TestClient:
        app = FastAPI()
        install_error_handlers(app)
        app.include_router(router, prefix="/api")
        app.dependency_overrides[settings_dependency] = lambda: test_settings
        app.dependency_overrides[locator_dependency] = lambda: locator or make_locator()
        return TestClient(app)

    return _make


@pytest.fixture()
def no_spawn(monkeypatch):
    async def _refuse(*args, **kwargs):
        raise AssertionError("no process should be spawned")

    monkeypatch.setattr("tool_converter.pipeline.runner.asyncio.create_subprocess_exec", _refuse)


def _pages(data: bytes) -> int:
    return len(PdfReader(io.BytesIO(data)).pages)


def _empty(path) -> bool:
    return not path.exists() or not any(path.iterdir())


class _SpyLocator(ToolLocator):
    def __init__(self) -> None:
        super().__init__({}, environ={}, which=lambda name: None)
        self.calls: list[str] = []

    def locate(self, name):
        self.calls.append(name)
        return super().locate(name)


def test_convert_rejects_oversized_upload_before_locating_tools(make_client):
    locator = _SpyLocator()
    client = make_client(locator)

    response = client.post(
        "/api/convert",
        data={"kind": "audio", "target": "mp3"},
        files={"file": ("big.wav", b"\0" * (1024 * 1024 + 200_000), "audio/wav")},
    )

    assert response.status_code == 413
    assert "File too large" in response.text
    assert locator.calls == []


def test_convert_unknown_audio_target(make_client, no_spawn):
    response = make_client().post(
        "/api/convert",
        data={"kind": "audio", "target": "bmp"},
        files={"file": ("song.wav", b"RIFF", "audio/wav")},
    )

    assert response.status_code == 400
    assert "bmp" in response.text


def test_convert_requires_target(make_client):
    response = make_client().post(
        "/api/convert",
        data={"kind": "audio"},
        files={"file": ("song.wav", b"RIFF", "audio/wav")},
    )

    assert response.status_code == 400
    assert response.text == "Missing target format"


def test_non_multipart_body_is_rejected_as_text(make_client):
    response = make_client().post("/api/convert", content=b"hello", headers={"Content-Type": "text/plain"})

    assert response.status_code == 400
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text == "Expected multipart/form-data"


def test_convert_audio_streams_output_and_cleans_up(make_client, make_locator, fake_ffmpeg, work_dir):
    client = make_client(make_locator(ffmpeg=fake_ffmpeg))

    response = client.post(
        "/api/convert",
        data={"kind": "audio", "target": "mp3"},
        files={"file": ("My Song.wav", b"RIFF-audio", "audio/wav")},
    )

    assert response.status_code == 200
    assert response.content == b"RIFF-audio"
    assert response.headers["content-type"] == "audio/mpeg"
    assert 'filename="My Song.mp3"' in response.headers["content-disposition"]
    assert _empty(work_dir)


def test_convert_bad_input_maps_to_422(make_client, make_locator, fake_tool, work_dir):
    ffmpeg = fake_tool("ffmpeg", 'echo "in.wav: Invalid data found when processing input" >&2\nexit 1\n')
    client = make_client(make_locator(ffmpeg=ffmpeg))

    response = client.post(
        "/api/convert",
        data={"kind": "audio", "target": "mp3"},
        files={"file": ("broken.wav", b"garbage", "audio/wav")},
    )

    assert response.status_code == 422
    assert "Invalid data found" in response.text
    assert _empty(work_dir)


def test_convert_stops_tool_when_client_disconnects(make_client, make_locator, fake_tool, work_dir, tmp_path, monkeypatch):
    marker = tmp_path / "ffmpeg-finished"
    ffmpeg = fake_tool("ffmpeg", f"sleep 2\ntouch {marker}\n")
    client = make_client(make_locator(ffmpeg=ffmpeg))
    polls: list[float] = []

    async def _gone_after_a_moment(self) -> bool:
        polls.append(time.monotonic())
        return polls[-1] - polls[0] > 0.3

    monkeypatch.setattr(Request, "is_disconnected", _gone_after_a_moment)
    monkeypatch.setattr("tool_converter.pipeline.acceptor.DISCONNECT_POLL_SEC", 0.05)

    started = time.monotonic()
    response = client.post(
        "/api/convert",
        data={"kind": "audio", "target": "mp3"},
        files={"file": ("long.wav", b"RIFF-audio", "audio/wav")},
    )

    assert response.status_code == 499
    assert time.monotonic() - started < 1.8
    assert _empty(work_dir)
    time.sleep(2.5)
    assert not marker.exists()

def test_convert_without_ffmpeg_names_override_variable(make_client):
    response = make_client().post(
        "/api/convert",
        data={"kind": "video", "target": "mp4"},
        files={"file": ("clip.mov", b"moov", "video/quicktime")},
    )

    assert response.status_code == 500
    assert "FFMPEG_PATH" in response.text


def test_process_uses_fixed_download_name(make_client, make_locator, fake_ffmpeg):
    client = make_client(make_locator(ffmpeg=fake_ffmpeg))

    response = client.post(
        "/api/process",
        data={"format": "wav", "normalize": "true", "start": "1.5", "end": "4"},
        files={"file": ("take.mp3", b"ID3-audio", "audio/mpeg")},
    )

    assert response.status_code == 200
    assert 'filename="output.wav"' in response.headers["content-disposition"]


def test_process_rejects_unknown_bitrate(make_client, no_spawn):
    response = make_client().post(
        "/api/process",
        data={"format": "mp3", "bitrate": "999"},
        files={"file": ("take.mp3", b"ID3", "audio/mpeg")},
    )

    assert response.status_code == 400
    assert "bitrate" in response.text


def test_convert_image_in_process(make_client):
    response = make_client().post(
        "/api/convert",
        data={"kind": "image", "target": "jpg"},
        files={"file": ("photo.png", png_bytes(), "image/png")},
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "image/jpeg"
    assert 'filename="photo.jpg"' in response.headers["content-disposition"]
    assert Image.open(io.BytesIO(response.content)).format == "JPEG"


def test_image_tools_resizes(make_client):
    response = make_client().post(
        "/api/image-tools",
        data={"width": "100"},
        files={"file": ("wide.png", png_bytes(400, 200), "image/png")},
    )

    assert response.status_code == 200
    assert 'filename="output.png"' in response.headers["content-disposition"]
    assert Image.open(io.BytesIO(response.content)).size == (100, 50)


def test_remove_bg_reports_backend(make_client, monkeypatch):
    monkeypatch.setattr(
        "tool_converter.tools.background.remove_background",
        lambda data, filename, settings: BackgroundResult(b"PNGDATA", "local-rembg/api/remove"),
    )

    response = make_client().post("/api/remove-bg", files={"image": ("cat.jpg", b"jpeg", "image/jpeg")})

    assert response.status_code == 200
    assert response.content == b"PNGDATA"
    assert response.headers["x-bg-backend"] == "local-rembg/api/remove"
    assert 'filename="cat-no-bg.png"' in response.headers["content-disposition"]


def test_yt_rejects_foreign_host_with_json(make_client, no_spawn):
    response = make_client().post("/api/yt", json={"url": "https://example.com/watch?v=1"})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid URL. Only youtube.com/youtu.be are allowed."


def test_yt_errors_are_json_even_for_other_content_types(make_client):
    response = make_client().post("/api/yt", content=b"url=x", headers={"Content-Type": "text/plain"})

    assert response.status_code == 400
    assert response.json()["error_code"] == "ERR_INVALID_REQUEST"


def test_yt_streams_transcoder_output(make_client, make_locator, fake_tool):
    locator = make_locator(
        yt_dlp=fake_tool("yt-dlp", "printf 'media-bytes'\n"),
        ffmpeg=fake_tool("ffmpeg", "cat\n"),
    )

    response = make_client(locator).post("/api/yt", json={"url": "https://youtu.be/abc123", "format": "mp3"})

    assert response.status_code == 200
    assert response.content == b"media-bytes"
    assert response.headers["content-type"] == "audio/mpeg"
    assert 'filename="download.mp3"' in response.headers["content-disposition"]


def test_yt_fetch_failure_becomes_json_422(make_client, make_locator, fake_tool):
    locator = make_locator(
        yt_dlp=fake_tool("yt-dlp", 'echo "ERROR: Unsupported URL: https://youtu.be/x" >&2\nexit 1\n'),
        ffmpeg=fake_tool("ffmpeg", "cat\n"),
    )

    response = make_client(locator).post("/api/yt", json={"url": "https://youtu.be/x"})

    assert response.status_code == 422
    assert "Unsupported URL" in response.json()["error"]


def test_split_falls_back_to_library(make_client):
    response = make_client().post(
        "/api/pdf/split",
        data={"ranges": "1,3-5"},
        files={"file": ("book.pdf", pdf_bytes(10), "application/pdf")},
    )

    assert response.status_code == 200
    assert response.headers["x-split-backend"] == "library"
    assert 'filename="extracted.pdf"' in response.headers["content-disposition"]
    assert _pages(response.content) == 4


def test_split_skips_failing_qpdf(make_client, make_locator, fake_tool, work_dir):
    client = make_client(make_locator(qpdf=fake_tool("qpdf", FAIL)))

    response = client.post(
        "/api/pdf/split",
        data={"ranges": "2"},
        files={"file": ("book.pdf", pdf_bytes(3), "application/pdf")},
    )

    assert response.status_code == 200
    assert response.headers["x-split-backend"] == "library"
    assert _pages(response.content) == 1
    assert _empty(work_dir)


def test_split_rejects_malformed_ranges(make_client):
    response = make_client().post(
        "/api/pdf/split",
        data={"ranges": "1;rm -rf"},
        files={"file": ("book.pdf", pdf_bytes(3), "application/pdf")},
    )

    assert response.status_code == 400


def test_merge_prefers_pdfunite(make_client, make_locator, fake_tool):
    client = make_client(make_locator(pdfunite=fake_tool("pdfunite", WRITE_LAST_ARG)))

    response = client.post(
        "/api/pdf/merge",
        files=[
            ("files", ("a.pdf", pdf_bytes(1), "application/pdf")),
            ("files", ("b.pdf", pdf_bytes(2), "application/pdf")),
        ],
    )

    assert response.status_code == 200
    assert response.content == b"%PDF-fake"
    assert response.headers["x-merge-backend"] == "pdfunite"


def test_merge_falls_through_failing_binaries(make_client, make_locator, fake_tool):
    client = make_client(make_locator(pdfunite=fake_tool("pdfunite", FAIL), gs=fake_tool("gs", FAIL)))

    response = client.post(
        "/api/pdf/merge",
        files=[
            ("files", ("a.pdf", pdf_bytes(1), "application/pdf")),
            ("files", ("b.pdf", pdf_bytes(2), "application/pdf")),
        ],
    )

    assert response.status_code == 200
    assert response.headers["x-merge-backend"] == "library"
    assert _pages(response.content) == 3
    assert "x-merge-warnings" not in response.headers


def test_merge_reports_unreadable_inputs(make_client):
    response = make_client().post(
        "/api/pdf/merge",
        files=[
            ("files", ("good.pdf", pdf_bytes(2), "application/pdf")),
            ("files", ("junk.pdf", b"not a pdf", "application/pdf")),
        ],
    )

    assert response.status_code == 200
    assert _pages(response.content) == 2
    assert unquote(response.headers["x-merge-warnings"]).startswith("junk.pdf:")


def test_merge_with_only_unreadable_inputs(make_client):
    response = make_client().post(
        "/api/pdf/merge",
        files=[("files", ("junk.pdf", b"not a pdf", "application/pdf"))],
    )

    assert response.status_code == 400
    assert "Could not open any PDFs" in response.text


def test_compress_accepts_slash_preset_and_uses_library(make_client):
    response = make_client().post(
        "/api/pdf/compress",
        data={"preset": "/screen"},
        files={"file": ("big.pdf", pdf_bytes(2), "application/pdf")},
    )

    assert response.status_code == 200
    assert response.headers["x-compress-backend"] == "library"
    assert 'filename="compressed.pdf"' in response.headers["content-disposition"]
    assert _pages(response.content) == 2


def test_compress_rejects_unknown_preset(make_client):
    response = make_client().post(
        "/api/pdf/compress",
        data={"preset": "tiny"},
        files={"file": ("big.pdf", pdf_bytes(1), "application/pdf")},
    )

    assert response.status_code == 400


def test_text_extraction(make_client):
    response = make_client().post("/api/pdf/text", files={"file": ("doc.pdf", pdf_bytes(1), "application/pdf")})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert 'filename="extracted.txt"' in response.headers["content-disposition"]


def test_sign_requires_certificate(make_client):
    response = make_client().post(
        "/api/pdf/sign",
        data={"text": "Jane"},
        files={"file": ("doc.pdf", pdf_bytes(1), "application/pdf")},
    )

    assert response.status_code == 400
    assert response.text == "Missing PDF or certificate"


def test_sign_requires_text(make_client):
    response = make_client().post(
        "/api/pdf/sign",
        files={
            "file": ("doc.pdf", pdf_bytes(1), "application/pdf"),
            "p12": ("cert.p12", b"pkcs12", "application/x-pkcs12"),
        },
    )

    assert response.status_code == 400
    assert response.text == "Missing signature text"


def test_sign_with_unreadable_certificate(make_client, work_dir):
    response = make_client().post(
        "/api/pdf/sign",
        data={"text": "Jane", "pass": "secret"},
        files={
            "file": ("doc.pdf", pdf_bytes(1), "application/pdf"),
            "p12": ("cert.p12", b"not a certificate", "application/x-pkcs12"),
        },
    )

    assert response.status_code == 422
    assert _empty(work_dir)


def test_formats_lists_recipes(make_client):
    payload = make_client().get("/api/formats").json()

    pairs = {(recipe["kind"], recipe["target"]) for recipe in payload["recipes"]}
    assert ("audio", "mp3") in pairs
    assert ("remote", "mp4") in pairs
    assert payload["image_targets"] == ["jpg", "png", "webp"]
    assert "ebook" in payload["pdf_compress_presets"]


def test_health_reports_missing_tools(make_client, make_locator, fake_ffmpeg):
    payload = make_client(make_locator(ffmpeg=fake_ffmpeg)).get("/api/monitor/health").json()

    assert payload["status"] == "degraded"
    assert payload["dependencies"]["ffmpeg"] == "ok:configured"
    assert payload["dependencies"]["qpdf"] == "missing"


def test_pkcs7_sign_alias_validates_like_sign(make_client):
    response = make_client().post(
        "/api/pdf/pkcs7-sign",
        files={"file": ("doc.pdf", pdf_bytes(1), "application/pdf")},
    )

    assert response.status_code == 400
    assert response.text == "Missing PDF or certificate"
