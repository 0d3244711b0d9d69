"""API route definitions for the tools service."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from starlette.concurrency import run_in_threadpool

from ..config import Settings, settings_dependency
from ..errors import InvalidRequest, PipelineError, UnsupportedOperation, error_response
from ..monitoring import collect_tool_status
from ..pipeline.acceptor import (
    bool_param,
    cancel_on_disconnect,
    choice,
    clean_text,
    float_param,
    form_file,
    form_files,
    int_param,
    open_form,
    page_ranges,
    read_json,
)
from ..pipeline.locator import ToolLocator, locator_dependency
from ..pipeline.models import ConversionRequest
from ..pipeline.streamer import bytes_response, safe_basename
from ..recipes import REGISTRY, load_recipes
from ..recipes.builtin.audio import BITRATES_KBPS, SAMPLE_RATES
from ..recipes.builtin.pdf import COMPRESS_PRESETS
from ..tools import background, images, media, pdf_ops, signing
from .schemas import DownloadRequest, FormatsResponse, HealthResponse, RecipeDescriptor

logger = logging.getLogger(__name__)
router = APIRouter()

load_recipes()

CONVERT_KINDS = ("image", "audio", "video")
MAX_DIMENSION = 10000
MAX_SECONDS = 24 * 3600


def _upload_limit(settings: Settings, tool: str) -> dict[str, int]:
    return {
        "max_bytes": settings.max_upload_bytes(tool),
        "max_files": settings.file_limits.max_files_per_request,
    }


@router.post("/convert")
async def convert(
    request: Request,
    settings: Settings = Depends(settings_dependency),
    locator: ToolLocator = Depends(locator_dependency),
) -> Response:
    async with open_form(request, **_upload_limit(settings, "convert")) as form:
        source = form_file(form, "file")
        kind = choice(form.get("kind"), CONVERT_KINDS, field="kind")
        target = clean_text(form.get("target"), max_length=16).lower()
        if not target:
            raise InvalidRequest("Missing target format")

        if kind == "image":
            if target not in images.IMAGE_TARGETS:
                raise UnsupportedOperation(f"Unsupported image target: {target}")
            encoded = await run_in_threadpool(images.convert_image, await source.read_bytes(), target)
            return bytes_response(
                encoded.data,
                media_type=encoded.media_type,
                filename=f"{safe_basename(source.filename)}.{encoded.extension}",
            )

        recipe = REGISTRY.get(kind, target)
        job = ConversionRequest(kind, target, (source,))
        return await cancel_on_disconnect(request, media.transcode(job, recipe, locator=locator, settings=settings))


@router.post("/process")
async def process_audio(
    request: Request,
    settings: Settings = Depends(settings_dependency),
    locator: ToolLocator = Depends(locator_dependency),
) -> Response:
    async with open_form(request, **_upload_limit(settings, "process")) as form:
        source = form_file(form, "file")
        target = choice(form.get("format"), REGISTRY.targets("audio"), field="format", default="mp3")
        options = {
            "normalize": bool_param(form.get("normalize"), field="normalize"),
            "start": float_param(form.get("start"), field="start", minimum=0, maximum=MAX_SECONDS),
            "end": float_param(form.get("end"), field="end", minimum=0, maximum=MAX_SECONDS),
            "bitrate": choice(form.get("bitrate"), BITRATES_KBPS, field="bitrate", default="") or None,
            "samplerate": choice(form.get("samplerate"), SAMPLE_RATES, field="samplerate", default="") or None,
        }
        recipe = REGISTRY.get("audio", target)
        job = ConversionRequest("audio", target, (source,), options)
        return await cancel_on_disconnect(
            request,
            media.transcode(job, recipe, locator=locator, settings=settings, download_name=f"output.{recipe.extension}"),
        )


@router.post("/image-tools")
async def image_tools(request: Request, settings: Settings = Depends(settings_dependency)) -> Response:
    async with open_form(request, **_upload_limit(settings, "image-tools")) as form:
        source = form_file(form, "file")
        width = int_param(form.get("width"), field="width", minimum=1, maximum=MAX_DIMENSION)
        height = int_param(form.get("height"), field="height", minimum=1, maximum=MAX_DIMENSION)
        fit = choice(form.get("fit"), images.FIT_MODES, field="fit", default="inside")
        fmt = choice(form.get("format"), images.OUTPUT_FORMATS, field="format", default="auto")
        quality = int_param(form.get("quality"), field="quality", default=images.DEFAULT_QUALITY, minimum=0, maximum=100)
        strip = bool_param(form.get("strip"), field="strip", default=True)

        encoded = await run_in_threadpool(
            images.process_image,
            await source.read_bytes(),
            width=width,
            height=height,
            fit=fit,
            fmt=fmt,
            quality=quality,
            strip=strip,
            source_content_type=source.content_type,
        )
    return bytes_response(encoded.data, media_type=encoded.media_type, filename=f"output.{encoded.extension}")


@router.post("/remove-bg")
async def remove_bg(request: Request, settings: Settings = Depends(settings_dependency)) -> Response:
    async with open_form(request, **_upload_limit(settings, "remove-bg")) as form:
        source = form_file(form, "image", default_name="image.png")
        result = await run_in_threadpool(
            background.remove_background,
            await source.read_bytes(),
            source.filename,
            settings.background,
        )
    return bytes_response(
        result.data,
        media_type="image/png",
        filename=f"{safe_basename(source.filename, 'image')}-no-bg.png",
        extra_headers={"X-BG-Backend": result.backend},
    )


@router.post("/yt")
async def download_remote(
    request: Request,
    settings: Settings = Depends(settings_dependency),
    locator: ToolLocator = Depends(locator_dependency),
) -> Response:
    """Errors from this endpoint are always JSON, whatever the request declared."""

    try:
        payload = await read_json(request, max_bytes=settings.file_limits.max_json_body_kb * 1024)
        download = DownloadRequest.from_payload(payload)
        recipe = REGISTRY.get("remote", download.format)
        return await cancel_on_disconnect(
            request, media.stream_remote(download.url, recipe, locator=locator, settings=settings)
        )
    except PipelineError as exc:
        logger.warning("Remote download rejected: %s", exc.message)
        return error_response(exc, as_json=True)


@router.post("/pdf/compress")
async def pdf_compress(
    request: Request,
    settings: Settings = Depends(settings_dependency),
    locator: ToolLocator = Depends(locator_dependency),
) -> Response:
    async with open_form(request, **_upload_limit(settings, "pdf")) as form:
        source = form_file(form, "file", default_name="document.pdf")
        preset = choice(clean_text(form.get("preset"), max_length=16).lstrip("/"), COMPRESS_PRESETS, field="preset", default="ebook")
        return await cancel_on_disconnect(request, pdf_ops.compress(source, preset, locator=locator, settings=settings))


@router.post("/pdf/merge")
async def pdf_merge(
    request: Request,
    settings: Settings = Depends(settings_dependency),
    locator: ToolLocator = Depends(locator_dependency),
) -> Response:
    async with open_form(request, **_upload_limit(settings, "pdf")) as form:
        sources = form_files(form, "files", default_name="file.pdf")
        password = clean_text(form.get("password"), max_length=settings.file_limits.max_text_length)
        ignore = bool_param(form.get("ignore"), field="ignore")
        return await cancel_on_disconnect(
            request, pdf_ops.merge(sources, password=password, ignore=ignore, locator=locator, settings=settings)
        )


@router.post("/pdf/split")
async def pdf_split(
    request: Request,
    settings: Settings = Depends(settings_dependency),
    locator: ToolLocator = Depends(locator_dependency),
) -> Response:
    async with open_form(request, **_upload_limit(settings, "pdf")) as form:
        source = form_file(form, "file", default_name="document.pdf")
        ranges = page_ranges(form.get("ranges"))
        password = clean_text(form.get("password"), max_length=settings.file_limits.max_text_length)
        ignore = bool_param(form.get("ignore"), field="ignore")
        work = pdf_ops.split(source, ranges, password=password, ignore=ignore, locator=locator, settings=settings)
        return await cancel_on_disconnect(request, work)


@router.post("/pdf/text")
async def pdf_text(request: Request, settings: Settings = Depends(settings_dependency)) -> Response:
    async with open_form(request, **_upload_limit(settings, "pdf")) as form:
        source = form_file(form, "file", default_name="document.pdf")
        text = await run_in_threadpool(pdf_ops.extract_text, await source.read_bytes(), name=source.filename)
    return bytes_response(text.encode("utf-8"), media_type="text/plain; charset=utf-8", filename="extracted.txt")


@router.post("/pdf/sign")
@router.post("/pdf/pkcs7-sign")
async def pdf_sign(request: Request, settings: Settings = Depends(settings_dependency)) -> Response:
    async with open_form(request, **_upload_limit(settings, "pdf")) as form:
        source = form_file(form, "file", required=False, default_name="document.pdf")
        certificate = form_file(form, "p12", required=False, default_name="certificate.p12")
        if source is None or certificate is None:
            raise InvalidRequest("Missing PDF or certificate")
        text = clean_text(form.get("text"), max_length=settings.file_limits.max_text_length)
        if not text:
            raise InvalidRequest("Missing signature text")

        placement = signing.StampPlacement(
            page=int_param(form.get("page"), field="page", default=1, minimum=1),
            x=int_param(form.get("x"), field="x", default=0, minimum=0, maximum=MAX_DIMENSION),
            y=int_param(form.get("y"), field="y", default=0, minimum=0, maximum=MAX_DIMENSION),
            width_pct=int_param(form.get("widthPct"), field="widthPct", default=30, minimum=5, maximum=90),
        )
        work = signing.sign(
            source,
            certificate,
            passphrase=clean_text(form.get("pass"), max_length=settings.file_limits.max_text_length),
            text=text,
            placement=placement,
            font=form_file(form, "ttf", required=False, default_name="font.ttf"),
            settings=settings,
        )
        return await cancel_on_disconnect(request, work)


@router.get("/formats", response_model=FormatsResponse)
async def list_formats() -> FormatsResponse:
    recipes = [RecipeDescriptor(**recipe.describe()) for recipe in REGISTRY.list()]
    return FormatsResponse(
        recipes=recipes,
        image_targets=sorted(images.ENCODERS),
        image_fit_modes=list(images.FIT_MODES),
        pdf_compress_presets=list(COMPRESS_PRESETS),
    )


@router.get("/monitor/health", response_model=HealthResponse)
async def health_check(
    settings: Settings = Depends(settings_dependency),
    locator: ToolLocator = Depends(locator_dependency),
) -> HealthResponse:
    deps = collect_tool_status(settings, locator)
    status = "ok" if all(value.startswith("ok") for value in deps.values()) else "degraded"
    return HealthResponse(status=status, timestamp=datetime.now(timezone.utc), dependencies=deps)
