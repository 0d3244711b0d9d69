"""Parse and validate incoming tool requests before anything is spawned."""

from __future__ import annotations

import json
import math
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Collection, Iterable, List, TypeVar
from urllib.parse import urlparse

import anyio
import structlog
from fastapi import Request
from starlette.datastructures import FormData, UploadFile

from ..errors import ClientDisconnected, InvalidRequest, PayloadTooLarge, UnsupportedParameter
from .models import SourceFile

logger = structlog.get_logger(__name__)
T = TypeVar("T")

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_PAGE_RANGES = re.compile(r"^\s*\d+\s*(-\s*\d+\s*)?(,\s*\d+\s*(-\s*\d+\s*)?)*$")
_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}

REMOTE_MEDIA_HOSTS = ("youtube.com", "youtu.be")
DISCONNECT_POLL_SEC = 0.5


def _declared_length(request: Request) -> int | None:
    raw = request.headers.get("content-length")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise InvalidRequest("Invalid Content-Length header") from exc


def _upload_size(upload: UploadFile) -> int:
    if upload.size is not None:
        return upload.size
    handle = upload.file
    position = handle.tell()
    handle.seek(0, 2)
    size = handle.tell()
    handle.seek(position)
    return size


async def read_form(request: Request, *, max_bytes: int, max_files: int = 20) -> FormData:
    """Parse a multipart body after checking its type and declared size."""

    content_type = (request.headers.get("content-type") or "").lower()
    if "multipart/form-data" not in content_type:
        raise InvalidRequest("Expected multipart/form-data")

    length = _declared_length(request)
    if length is not None and length > max_bytes:
        raise PayloadTooLarge(max_bytes)

    try:
        form = await request.form(max_files=max_files)
    except Exception as exc:  # multipart parser raises several unrelated types
        raise InvalidRequest(f"Malformed multipart body: {exc}") from exc

    total = 0
    for _, value in form.multi_items():
        if isinstance(value, UploadFile):
            total += _upload_size(value)
    if total > max_bytes:
        await form.close()
        raise PayloadTooLarge(max_bytes)
    return form


@asynccontextmanager
async def open_form(request: Request, *, max_bytes: int, max_files: int = 20) -> AsyncIterator[FormData]:
    """``read_form`` that closes the spooled uploads when the handler is done."""

    form = await read_form(request, max_bytes=max_bytes, max_files=max_files)
    try:
        yield form
    finally:
        await form.close()


async def read_json(request: Request, *, max_bytes: int) -> dict[str, Any]:
    content_type = (request.headers.get("content-type") or "").lower()
    if "application/json" not in content_type:
        raise InvalidRequest("Expected application/json")

    length = _declared_length(request)
    if length is not None and length > max_bytes:
        raise PayloadTooLarge(max_bytes)

    body = await request.body()
    if len(body) > max_bytes:
        raise PayloadTooLarge(max_bytes)
    try:
        payload = json.loads(body or b"{}")
    except ValueError as exc:
        raise InvalidRequest("Request body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise InvalidRequest("Request body must be a JSON object")
    return payload


def _as_source(upload: UploadFile, default_name: str) -> SourceFile:
    return SourceFile(
        filename=clean_text(upload.filename, max_length=255) or default_name,
        content_type=upload.content_type,
        size=_upload_size(upload),
        upload=upload,
    )


def form_file(form: FormData, field: str, *, required: bool = True, default_name: str = "upload") -> SourceFile | None:
    value = form.get(field)
    if isinstance(value, UploadFile):
        return _as_source(value, default_name)
    if required:
        raise InvalidRequest(f"Missing file field '{field}'")
    return None


def form_files(form: FormData, field: str, *, default_name: str = "upload") -> List[SourceFile]:
    files = [
        _as_source(value, f"{default_name}-{index + 1}")
        for index, value in enumerate(form.getlist(field))
        if isinstance(value, UploadFile)
    ]
    if not files:
        raise InvalidRequest(f"No files in field '{field}'")
    return files


def clean_text(value: Any, *, max_length: int = 512) -> str:
    if value is None or isinstance(value, UploadFile):
        return ""
    text = _CONTROL_CHARS.sub("", str(value)).strip()
    return text[:max_length]


def choice(value: Any, allowed: Collection[str], *, field: str, default: str | None = None) -> str:
    text = clean_text(value, max_length=64).lower()
    if not text:
        if default is not None:
            return default
        raise InvalidRequest(f"Missing {field}")
    if text not in allowed:
        options = ", ".join(sorted(allowed))
        raise UnsupportedParameter(f"Unsupported {field}: {text} (allowed: {options})")
    return text


def _clamp(number: float, minimum: float | None, maximum: float | None) -> float:
    if minimum is not None:
        number = max(minimum, number)
    if maximum is not None:
        number = min(maximum, number)
    return number


def int_param(
    value: Any,
    *,
    field: str,
    default: int | None = None,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int | None:
    text = clean_text(value, max_length=32)
    if not text:
        return default
    try:
        number = int(text, 10)
    except ValueError as exc:
        raise UnsupportedParameter(f"{field} must be an integer") from exc
    return int(_clamp(number, minimum, maximum))


def float_param(
    value: Any,
    *,
    field: str,
    default: float | None = None,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float | None:
    text = clean_text(value, max_length=32)
    if not text:
        return default
    try:
        number = float(text)
    except ValueError as exc:
        raise UnsupportedParameter(f"{field} must be a number") from exc
    if not math.isfinite(number):
        raise UnsupportedParameter(f"{field} must be a finite number")
    return _clamp(number, minimum, maximum)


def bool_param(value: Any, *, field: str, default: bool = False) -> bool:
    text = clean_text(value, max_length=8).lower()
    if not text:
        return default
    if text in _TRUTHY:
        return True
    if text in _FALSY:
        return False
    raise UnsupportedParameter(f"{field} must be true or false")


def page_ranges(value: Any, *, field: str = "ranges") -> str:
    text = clean_text(value, max_length=256)
    if not text:
        raise InvalidRequest(f"Missing {field}")
    if not _PAGE_RANGES.match(text):
        raise UnsupportedParameter(f"Invalid {field}: use a list such as 1,3-5")
    return re.sub(r"\s+", "", text)


def source_url(value: Any, *, hosts: Iterable[str] = REMOTE_MEDIA_HOSTS) -> str:
    text = clean_text(value, max_length=2048)
    parsed = urlparse(text)
    host = (parsed.hostname or "").lower()
    allowed = any(host == candidate or host.endswith(f".{candidate}") for candidate in hosts)
    if parsed.scheme not in {"http", "https"} or not allowed:
        raise InvalidRequest("Invalid URL. Only youtube.com/youtu.be are allowed.")
    return text


async def cancel_on_disconnect(request: Request, work: Awaitable[T]) -> T:
    """Await ``work`` while polling the client; a disconnect cancels it.

    Only call this once the request body has been read, otherwise the poll
    would swallow body chunks. Cancellation reaches ``run_process`` as
    ``CancelledError``, which kills the child before the workspace unwinds.
    """

    interval = DISCONNECT_POLL_SEC
    pending = object()
    result: Any = pending
    failure: Exception | None = None

    async def watch(scope: anyio.CancelScope) -> None:
        while not await request.is_disconnected():
            await anyio.sleep(interval)
        logger.info("client_disconnected", path=request.url.path)
        scope.cancel()

    async with anyio.create_task_group() as group:
        group.start_soon(watch, group.cancel_scope)
        try:
            result = await work
        except Exception as exc:  # re-raised below so the task group does not wrap it
            failure = exc
        group.cancel_scope.cancel()

    if failure is not None:
        raise failure
    # A finished response owns its cleanup hook, so it wins over a late disconnect.
    if result is pending:
        raise ClientDisconnected()
    return result
