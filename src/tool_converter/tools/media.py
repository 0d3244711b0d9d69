"""FFmpeg-backed audio/video transcoding and remote media streaming."""

from __future__ import annotations

import logging

from ..config import Settings
from ..errors import ProcessFailed
from ..pipeline.locator import ToolLocator
from ..pipeline.models import ConversionRequest
from ..pipeline.runner import JobWorkspace, ProcessPipeline, run_process
from ..pipeline.streamer import CleanupStreamingResponse, file_response, pipe_response, safe_basename
from ..recipes.base import ArgumentRecipe, RemoteRecipe
from ..recipes.builtin.remote import PIPE_IN, PIPE_OUT

logger = logging.getLogger(__name__)


async def transcode(
    request: ConversionRequest,
    recipe: ArgumentRecipe,
    *,
    locator: ToolLocator,
    settings: Settings,
    download_name: str | None = None,
) -> CleanupStreamingResponse:
    """Write the upload to a job workspace, run the recipe and stream the output file."""

    source = request.source
    tool = locator.locate(recipe.tool)
    with JobWorkspace(settings.work_path, recipe.kind) as workspace:
        input_path = workspace.file(f"in{source.suffix}")
        output_path = workspace.file(f"out.{recipe.extension}")
        await source.save_to(input_path)

        args = recipe.build_args(str(input_path), str(output_path), request.params)
        await run_process(tool, args, timeout=settings.timeouts.media_sec, cwd=workspace.path)
        if not output_path.exists():
            raise ProcessFailed(tool.name, 0, message=f"{tool.name} produced no output")

        filename = download_name or f"{safe_basename(source.filename)}.{recipe.extension}"
        logger.info("Transcoded %s -> %s", source.filename, filename)
        response = file_response(
            output_path,
            media_type=recipe.media_type,
            filename=filename,
            cleanup=workspace.cleanup,
        )
        workspace.detach()
        return response


async def stream_remote(
    url: str,
    recipe: RemoteRecipe,
    *,
    locator: ToolLocator,
    settings: Settings,
) -> CleanupStreamingResponse:
    """Chain the fetcher into FFmpeg and stream FFmpeg's stdout to the client."""

    fetcher = locator.locate(recipe.fetch_tool)
    transcoder = locator.locate(recipe.tool)
    pipeline = ProcessPipeline(
        [
            (fetcher, recipe.fetch_args(url)),
            (transcoder, recipe.build_args(PIPE_IN, PIPE_OUT, {})),
        ],
        timeout=settings.timeouts.remote_sec,
    )
    await pipeline.start()
    try:
        first_chunk = await pipeline.read_first()
    except BaseException:
        pipeline.kill()
        raise

    logger.info("Streaming remote media as %s", recipe.target)
    return pipe_response(
        pipeline,
        first_chunk,
        media_type=recipe.media_type,
        filename=f"download.{recipe.extension}",
    )
