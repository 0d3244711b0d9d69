"""Deliver pipeline output as HTTP responses and release job resources."""

from __future__ import annotations

import re
import unicodedata
from pathlib import Path
from typing import AsyncIterator, Callable, Mapping
from urllib.parse import quote

import anyio
import structlog
from fastapi.responses import Response, StreamingResponse
from starlette.types import Receive, Scope, Send

from .runner import ProcessPipeline

logger = structlog.get_logger(__name__)

FILE_CHUNK_SIZE = 64 * 1024
_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._ -]+")


def safe_basename(name: str | None, default: str = "output") -> str:
    """Filename stem without extension, directories or header-breaking characters."""

    stem = Path((name or "").replace("\\", "/")).name
    stem = re.sub(r"\.[^.]+$", "", stem)
    stem = "".join(ch for ch in stem if unicodedata.category(ch)[0] != "C").strip(" .")
    return stem[:120] or default


def content_disposition(filename: str) -> str:
    ascii_name = unicodedata.normalize("NFKD", filename).encode("ascii", "ignore").decode("ascii")
    ascii_name = _UNSAFE_FILENAME.sub("_", ascii_name).strip() or "download"
    header = f'attachment; filename="{ascii_name}"'
    if ascii_name != filename:
        header += f"; filename*=UTF-8''{quote(filename, safe='')}"
    return header


def download_headers(filename: str, extra: Mapping[str, str] | None = None) -> dict[str, str]:
    headers = {
        "Cache-Control": "no-store",
        "Content-Disposition": content_disposition(filename),
    }
    if extra:
        headers.update(extra)
    return headers


class CleanupStreamingResponse(StreamingResponse):
    """Streaming response that always runs ``on_close`` once the response is over.

    The hook fires after normal completion, client disconnect and task
    cancellation alike, so it must be synchronous.
    """

    def __init__(self, content, *, on_close: Callable[[], None], **kwargs) -> None:
        super().__init__(content, **kwargs)
        self._on_close = on_close

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self._on_close()


async def _iter_file(path: Path) -> AsyncIterator[bytes]:
    async with await anyio.open_file(path, "rb") as handle:
        while True:
            chunk = await handle.read(FILE_CHUNK_SIZE)
            if not chunk:
                break
            yield chunk


def file_response(
    path: Path,
    *,
    media_type: str,
    filename: str,
    cleanup: Callable[[], None],
    extra_headers: Mapping[str, str] | None = None,
) -> CleanupStreamingResponse:
    headers = download_headers(filename, extra_headers)
    headers["Content-Length"] = str(path.stat().st_size)
    return CleanupStreamingResponse(
        _iter_file(path),
        on_close=cleanup,
        media_type=media_type,
        headers=headers,
    )


def pipe_response(
    pipeline: ProcessPipeline,
    first_chunk: bytes,
    *,
    media_type: str,
    filename: str,
) -> CleanupStreamingResponse:
    def _close() -> None:
        pipeline.kill()
        logger.debug("pipe_response_closed", tools=[job.tool.name for job in pipeline.jobs])

    return CleanupStreamingResponse(
        pipeline.stream(first_chunk),
        on_close=_close,
        media_type=media_type,
        headers=download_headers(filename),
    )


def bytes_response(
    data: bytes,
    *,
    media_type: str,
    filename: str,
    extra_headers: Mapping[str, str] | None = None,
) -> Response:
    return Response(content=data, media_type=media_type, headers=download_headers(filename, extra_headers))
