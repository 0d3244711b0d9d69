"""PDF merge, split, compress and text extraction.

Each orchestrator walks its locator chain: external binaries first, pypdf
last. A binary that fails on the input hands over to the next candidate;
only a timeout is final.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Iterable, List, Sequence, Tuple
from urllib.parse import quote

from fastapi.responses import Response
from pypdf import PasswordType, PdfReader, PdfWriter
from pypdf.errors import PyPdfError
from starlette.concurrency import run_in_threadpool

from ..config import Settings
from ..errors import InputRejected, InvalidRequest, ProcessFailed, ProcessTimeout
from ..pipeline.locator import COMPRESS_CHAIN, MERGE_CHAIN, SPLIT_CHAIN, ToolLocator
from ..pipeline.models import SourceFile, ToolBinding
from ..pipeline.runner import JobWorkspace, run_process
from ..pipeline.streamer import bytes_response, file_response
from ..recipes import REGISTRY
from ..recipes.builtin.pdf import COMPRESS_PRESETS

logger = logging.getLogger(__name__)

PDF_MEDIA_TYPE = "application/pdf"
WARNING_SAFE_CHARS = "-_.!~*'()"


def expand_page_ranges(ranges: str, page_count: int) -> List[int]:
    """Turn ``1,3-5`` into 1-based page numbers, clamped and de-duplicated in order."""

    pages: List[int] = []
    seen = set()
    for part in (piece.strip() for piece in ranges.split(",")):
        if not part:
            continue
        if "-" in part:
            first, _, last = part.partition("-")
            low, high = sorted((int(first), int(last)))
            candidates: Iterable[int] = range(max(1, low), min(page_count, high) + 1)
        else:
            number = int(part)
            candidates = [number] if 1 <= number <= page_count else []
        for page in candidates:
            if page not in seen:
                seen.add(page)
                pages.append(page)
    return pages


def open_document(data: bytes | Path, name: str, *, password: str = "", ignore: bool = False) -> PdfReader:
    """Open a PDF trying plain, then ``password``, then the empty user password if ``ignore``."""

    try:
        reader = PdfReader(data if isinstance(data, Path) else io.BytesIO(data))
    except PyPdfError as exc:
        raise InputRejected(f"{name}: {exc}") from exc

    if not reader.is_encrypted:
        return reader

    attempts = [secret for secret, enabled in ((password, bool(password)), ("", ignore)) if enabled]
    for secret in attempts:
        try:
            if reader.decrypt(secret) != PasswordType.NOT_DECRYPTED:
                return reader
        except (PyPdfError, NotImplementedError) as exc:
            raise InputRejected(f"{name}: {exc}") from exc

    if password:
        raise InputRejected(f"{name}: invalid password")
    raise InputRejected(f"{name}: file is encrypted; supply a password or enable ignore")


def _write(writer: PdfWriter) -> bytes:
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def merge_documents(
    documents: Sequence[Tuple[str, bytes | Path]],
    *,
    password: str = "",
    ignore: bool = False,
) -> Tuple[bytes, List[str]]:
    """Concatenate every readable document; unreadable ones become warnings."""

    writer = PdfWriter()
    warnings: List[str] = []
    for name, data in documents:
        try:
            reader = open_document(data, name, password=password, ignore=ignore)
            pages = list(reader.pages)
        except InputRejected as exc:
            warnings.append(exc.message)
            continue
        except PyPdfError as exc:
            warnings.append(f"{name}: {exc}")
            continue
        for page in pages:
            writer.add_page(page)

    if not writer.pages:
        if warnings:
            raise InvalidRequest("Could not open any PDFs:\n- " + "\n- ".join(warnings))
        raise InvalidRequest("No pages merged.")
    return _write(writer), warnings


def split_document(data: bytes | Path, ranges: str, *, name: str = "document.pdf", password: str = "", ignore: bool = False) -> bytes:
    reader = open_document(data, name, password=password, ignore=ignore)
    try:
        wanted = expand_page_ranges(ranges, len(reader.pages))
        if not wanted:
            raise InvalidRequest(f"No pages selected by '{ranges}' (document has {len(reader.pages)} pages)")
        writer = PdfWriter()
        for number in wanted:
            writer.add_page(reader.pages[number - 1])
        return _write(writer)
    except PyPdfError as exc:
        raise InputRejected(f"{name}: {exc}") from exc


def compress_document(data: bytes | Path, *, name: str = "document.pdf") -> bytes:
    """Lossless fallback: recompress every content stream with Flate."""

    reader = open_document(data, name)
    try:
        writer = PdfWriter(clone_from=reader)
        for page in writer.pages:
            page.compress_content_streams()
        return _write(writer)
    except PyPdfError as exc:
        raise InputRejected(f"{name}: {exc}") from exc


def extract_text(data: bytes | Path, *, name: str = "document.pdf") -> str:
    reader = open_document(data, name, ignore=True)
    try:
        return "\n\n".join((page.extract_text() or "").strip() for page in reader.pages).strip()
    except PyPdfError as exc:
        raise InputRejected(f"{name}: {exc}") from exc


def _binaries(locator: ToolLocator, chain: Sequence[str]) -> List[ToolBinding]:
    return [binding for binding in locator.available(chain) if not binding.is_library]


async def _try_binary(binding: ToolBinding, args: List[str], output: Path, *, workspace: JobWorkspace, settings: Settings) -> bool:
    """Run one chain candidate; False means fall through to the next one."""

    try:
        await run_process(binding, args, timeout=settings.timeouts.pdf_sec, cwd=workspace.path)
    except ProcessTimeout:
        raise
    except (ProcessFailed, InputRejected) as exc:
        logger.warning("%s failed, trying next backend: %s", binding.name, exc.message)
        return False
    if not output.exists() or output.stat().st_size == 0:
        logger.warning("%s produced no output, trying next backend", binding.name)
        return False
    return True


async def _save_all(sources: Sequence[SourceFile], workspace: JobWorkspace) -> List[Path]:
    paths = []
    for index, source in enumerate(sources):
        path = workspace.file(f"in-{index:03d}.pdf")
        await source.save_to(path)
        paths.append(path)
    return paths


def _detached_file_response(workspace: JobWorkspace, path: Path, filename: str, headers: dict[str, str]) -> Response:
    response = file_response(
        path,
        media_type=PDF_MEDIA_TYPE,
        filename=filename,
        cleanup=workspace.cleanup,
        extra_headers=headers,
    )
    workspace.detach()
    return response


async def merge(
    sources: Sequence[SourceFile],
    *,
    password: str,
    ignore: bool,
    locator: ToolLocator,
    settings: Settings,
) -> Response:
    with JobWorkspace(settings.work_path, "merge") as workspace:
        inputs = await _save_all(sources, workspace)
        output = workspace.file("merged.pdf")

        for binding in _binaries(locator, MERGE_CHAIN):
            recipe = REGISTRY.get("pdf-merge", binding.name)
            args = recipe.build_args("", str(output), {"inputs": [str(path) for path in inputs]})
            if await _try_binary(binding, args, output, workspace=workspace, settings=settings):
                logger.info("Merged %d PDFs with %s", len(inputs), binding.name)
                return _detached_file_response(workspace, output, "merged.pdf", {"X-Merge-Backend": binding.name})

        documents = [(source.filename, path) for source, path in zip(sources, inputs)]
        data, warnings = await run_in_threadpool(merge_documents, documents, password=password, ignore=ignore)

    headers = {"X-Merge-Backend": "library"}
    if warnings:
        headers["X-Merge-Warnings"] = quote(" | ".join(warnings), safe=WARNING_SAFE_CHARS)
    logger.info("Merged %d PDFs with library (%d warnings)", len(documents), len(warnings))
    return bytes_response(data, media_type=PDF_MEDIA_TYPE, filename="merged.pdf", extra_headers=headers)


async def split(
    source: SourceFile,
    ranges: str,
    *,
    password: str,
    ignore: bool,
    locator: ToolLocator,
    settings: Settings,
) -> Response:
    with JobWorkspace(settings.work_path, "split") as workspace:
        (input_path,) = await _save_all([source], workspace)
        output = workspace.file("extracted.pdf")

        for binding in _binaries(locator, SPLIT_CHAIN):
            options = {"ranges": ranges}
            if password:
                password_file = workspace.file("password.txt")
                password_file.write_text(password, encoding="utf-8")
                options["password_file"] = str(password_file)
            args = REGISTRY.get("pdf-split", binding.name).build_args(str(input_path), str(output), options)
            if await _try_binary(binding, args, output, workspace=workspace, settings=settings):
                return _detached_file_response(workspace, output, "extracted.pdf", {"X-Split-Backend": binding.name})

        data = await run_in_threadpool(
            split_document,
            input_path,
            ranges,
            name=source.filename,
            password=password,
            ignore=ignore,
        )

    return bytes_response(
        data,
        media_type=PDF_MEDIA_TYPE,
        filename="extracted.pdf",
        extra_headers={"X-Split-Backend": "library"},
    )


async def compress(
    source: SourceFile,
    preset: str,
    *,
    locator: ToolLocator,
    settings: Settings,
) -> Response:
    if preset not in COMPRESS_PRESETS:
        raise InvalidRequest(f"Unknown compression preset: {preset}")

    with JobWorkspace(settings.work_path, "compress") as workspace:
        (input_path,) = await _save_all([source], workspace)
        output = workspace.file("compressed.pdf")

        for binding in _binaries(locator, COMPRESS_CHAIN):
            args = REGISTRY.get("pdf-compress", binding.name).build_args(str(input_path), str(output), {"preset": preset})
            if await _try_binary(binding, args, output, workspace=workspace, settings=settings):
                return _detached_file_response(workspace, output, "compressed.pdf", {"X-Compress-Backend": binding.name})

        data = await run_in_threadpool(compress_document, input_path, name=source.filename)

    return bytes_response(
        data,
        media_type=PDF_MEDIA_TYPE,
        filename="compressed.pdf",
        extra_headers={"X-Compress-Backend": "library"},
    )
