"""Shared pytest fixtures for the tools service tests."""

from __future__ import annotations

import io
import os
import stat
from pathlib import Path
from typing import Callable

import pytest
from PIL import Image
from pypdf import PdfWriter

from tool_converter.config import (
    FileLimitSettings,
    LoggingSettings,
    Settings,
    TimeoutSettings,
)
from tool_converter.pipeline.locator import ToolLocator

os.environ.setdefault("TOOLS_DISABLE_METRICS", "true")

FAKE_FFMPEG = """\
in=""
out=""
while [ $# -gt 0 ]; do
  case "$1" in
    -i) in="$2"; shift 2 ;;
    *) out="$1"; shift ;;
  esac
done
cp "$in" "$out"
"""


@pytest.fixture()
def test_settings(tmp_path) -> Settings:
    return Settings(
        service_name="tool-converter-test",
        environment="test",
        base_url="/api",
        work_dir=str(tmp_path / "work"),
        file_limits=FileLimitSettings(
            default_max_size_mb=5,
            per_tool_max_size_mb={"convert": 1},
            max_files_per_request=5,
        ),
        timeouts=TimeoutSettings(image_sec=5, pdf_sec=10, media_sec=10, remote_sec=10, background_sec=5),
        logging=LoggingSettings(log_dir=str(tmp_path / "logs")),
        recipe_modules_file=None,
    )


@pytest.fixture()
def work_dir(test_settings: Settings) -> Path:
    return test_settings.work_path


@pytest.fixture()
def fake_tool(tmp_path) -> Callable[[str, str], str]:
    """Write an executable shell script standing in for an external tool."""

    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()

    def _make(name: str, body: str) -> str:
        path = bin_dir / name
        path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return _make


@pytest.fixture()
def fake_ffmpeg(fake_tool) -> str:
    return fake_tool("ffmpeg", FAKE_FFMPEG)


@pytest.fixture()
def make_locator() -> Callable[..., ToolLocator]:
    """Locator that only sees the given paths; PATH and env are ignored."""

    def _make(**paths: str) -> ToolLocator:
        configured = {name.replace("_", "-"): path for name, path in paths.items()}
        return ToolLocator(configured, environ={}, which=lambda name: None)

    return _make


def pdf_bytes(pages: int = 1, *, user_password: str | None = None, owner_password: str | None = None) -> bytes:
    """Blank pages whose widths (100, 101, ...) identify them after a split."""

    writer = PdfWriter()
    for index in range(pages):
        writer.add_blank_page(width=100 + index, height=200)
    if user_password is not None:
        writer.encrypt(user_password=user_password, owner_password=owner_password or "owner-secret")
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def png_bytes(width: int = 400, height: int = 200, mode: str = "RGB") -> bytes:
    color = (200, 30, 30, 255) if mode == "RGBA" else (200, 30, 30)
    buffer = io.BytesIO()
    Image.new(mode, (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture()
def make_pdf() -> Callable[..., bytes]:
    return pdf_bytes


@pytest.fixture()
def make_png() -> Callable[..., bytes]:
    return png_bytes
