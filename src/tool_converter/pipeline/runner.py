"""Spawn external tools, either file-mediated or chained through pipes."""

from __future__ import annotations

import asyncio
import os
import re
import shutil
import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, List, Sequence, Tuple
from uuid import uuid4

import structlog

from ..errors import InputRejected, ProcessFailed, ProcessTimeout
from ..monitoring import record_job_completed, record_job_started
from .models import ToolBinding

logger = structlog.get_logger(__name__)

STDERR_TAIL_BYTES = 16 * 1024
PIPE_CHUNK_SIZE = 64 * 1024

# stderr fragments that mean the input itself is bad rather than the tool.
INPUT_PROBLEM_PATTERNS: Tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"Invalid data found when processing input",
        r"moov atom not found",
        r"invalid password",
        r"requires a password",
        r"not a PDF file",
        r"file is damaged",
        r"Unsupported URL",
        r"Video unavailable",
    )
)

# Python programs such as yt-dlp ignore SIGPIPE and report the closed pipe on stderr instead.
BROKEN_PIPE_PATTERN = re.compile(r"BrokenPipeError|Broken pipe|EPIPE")


@dataclass
class ProcessJob:
    tool: ToolBinding
    args: List[str]
    job_id: str = field(default_factory=lambda: uuid4().hex)
    returncode: int | None = None
    stderr: str = ""

    @property
    def argv(self) -> List[str]:
        return [self.tool.path, *self.args]

    def lost_reader(self) -> bool:
        """True when the process died because its stdout pipe was closed (SIGPIPE or EPIPE)."""

        return self.returncode == -signal.SIGPIPE or bool(BROKEN_PIPE_PATTERN.search(self.stderr))

    def failure(self) -> ProcessFailed | InputRejected:
        for line in self.stderr.splitlines():
            if any(pattern.search(line) for pattern in INPUT_PROBLEM_PATTERNS):
                return InputRejected(f"{self.tool.name}: {line.strip()}")
        return ProcessFailed(self.tool.name, self.returncode, self.stderr)


class JobWorkspace:
    """Per-job temporary directory holding the input/output file pair.

    The directory is removed when the context exits unless ``detach`` handed
    cleanup to the response layer.
    """

    def __init__(self, root: Path, prefix: str) -> None:
        self.job_id = uuid4().hex
        self.path = Path(root) / f"{prefix}-{self.job_id}"
        self._detached = False
        self._cleaned = False

    def __enter__(self) -> "JobWorkspace":
        self.path.mkdir(parents=True, exist_ok=False)
        return self

    def __exit__(self, *exc_info) -> None:
        if not self._detached:
            self.cleanup()

    def file(self, name: str) -> Path:
        return self.path / name

    def cleanup(self) -> None:
        if self._cleaned:
            return
        self._cleaned = True
        shutil.rmtree(self.path, ignore_errors=True)
        logger.debug("workspace_removed", path=str(self.path))

    def detach(self) -> None:
        """Hand cleanup to whoever holds ``self.cleanup`` (usually the response)."""

        self._detached = True


def _tail(data: bytes | bytearray) -> str:
    return bytes(data[-STDERR_TAIL_BYTES:]).decode("utf-8", errors="replace")


def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        pass


async def run_process(tool: ToolBinding, args: Sequence[str], *, timeout: float, cwd: Path | None = None) -> ProcessJob:
    """Run one tool to completion with stdout discarded and stderr captured."""

    job = ProcessJob(tool, list(args))
    try:
        proc = await asyncio.create_subprocess_exec(
            *job.argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd else None,
        )
    except OSError as exc:
        raise ProcessFailed(tool.name, None, message=f"Failed to start {tool.name}: {exc}") from exc

    record_job_started(tool.name)
    logger.info("process_started", tool=tool.name, job_id=job.job_id, pid=proc.pid)
    outcome = "failure"
    try:
        _, stderr = await asyncio.wait_for(proc.communicate(), timeout)
    except asyncio.TimeoutError:
        _kill(proc)
        await proc.wait()
        outcome = "timeout"
        raise ProcessTimeout(tool.name, timeout) from None
    except asyncio.CancelledError:
        _kill(proc)
        outcome = "cancelled"
        raise
    else:
        job.returncode = proc.returncode
        job.stderr = _tail(stderr or b"")
        if job.returncode != 0:
            logger.warning("process_failed", tool=tool.name, job_id=job.job_id, returncode=job.returncode)
            raise job.failure()
        outcome = "success"
        return job
    finally:
        record_job_completed(tool.name, outcome)
        logger.info("process_finished", tool=tool.name, job_id=job.job_id, status=outcome)


class ProcessPipeline:
    """Processes joined stdout-to-stdin by OS pipes; the last stdout is streamed."""

    def __init__(
        self,
        stages: Sequence[Tuple[ToolBinding, Sequence[str]]],
        *,
        timeout: float,
        chunk_size: int = PIPE_CHUNK_SIZE,
    ) -> None:
        if not stages:
            raise ValueError("ProcessPipeline requires at least one stage")
        self.jobs = [ProcessJob(tool, list(args)) for tool, args in stages]
        self.timeout = timeout
        self.chunk_size = chunk_size
        self._procs: List[asyncio.subprocess.Process] = []
        self._stderr: List[bytearray] = []
        self._drains: List[asyncio.Task] = []
        self._deadline: float | None = None
        self._finished = False
        self._timed_out = False

    @property
    def processes(self) -> List[asyncio.subprocess.Process]:
        return list(self._procs)

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        self._deadline = loop.time() + self.timeout
        last_index = len(self.jobs) - 1
        upstream_fd: int | None = None

        for index, job in enumerate(self.jobs):
            read_fd: int | None = None
            write_fd: int | None = None
            if index < last_index:
                read_fd, write_fd = os.pipe()
            try:
                proc = await asyncio.create_subprocess_exec(
                    *job.argv,
                    stdin=upstream_fd if upstream_fd is not None else asyncio.subprocess.DEVNULL,
                    stdout=write_fd if write_fd is not None else asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                for fd in (upstream_fd, read_fd, write_fd):
                    if fd is not None:
                        os.close(fd)
                self.kill()
                raise ProcessFailed(job.tool.name, None, message=f"Failed to start {job.tool.name}: {exc}") from exc

            # The children own their ends now.
            if upstream_fd is not None:
                os.close(upstream_fd)
            if write_fd is not None:
                os.close(write_fd)
            upstream_fd = read_fd

            buffer = bytearray()
            self._procs.append(proc)
            self._stderr.append(buffer)
            self._drains.append(asyncio.create_task(self._drain(proc.stderr, buffer)))
            record_job_started(job.tool.name)
            logger.info("process_started", tool=job.tool.name, job_id=job.job_id, pid=proc.pid, stage=index)

    @staticmethod
    async def _drain(stream: asyncio.StreamReader, buffer: bytearray) -> None:
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                return
            buffer.extend(chunk)
            if len(buffer) > STDERR_TAIL_BYTES:
                del buffer[: len(buffer) - STDERR_TAIL_BYTES]

    def _remaining(self) -> float:
        assert self._deadline is not None, "pipeline not started"
        return self._deadline - asyncio.get_running_loop().time()

    async def _read_chunk(self) -> bytes:
        stdout = self._procs[-1].stdout
        remaining = self._remaining()
        try:
            if remaining <= 0:
                raise asyncio.TimeoutError
            return await asyncio.wait_for(stdout.read(self.chunk_size), remaining)
        except asyncio.TimeoutError:
            self._timed_out = True
            self.kill()
            raise ProcessTimeout(self.jobs[-1].tool.name, self.timeout) from None

    async def read_first(self) -> bytes:
        """Read the first chunk so failures before any output become error responses."""

        chunk = await self._read_chunk()
        if not chunk:
            await self._finish()
        return chunk

    async def stream(self, first_chunk: bytes = b"") -> AsyncIterator[bytes]:
        try:
            if first_chunk:
                yield first_chunk
            while not self._finished:
                chunk = await self._read_chunk()
                if not chunk:
                    await self._finish()
                    break
                yield chunk
        finally:
            if not self._finished:
                self.kill()

    async def _finish(self) -> None:
        if self._finished:
            return
        try:
            remaining = max(self._remaining(), 0.1)
            await asyncio.wait_for(asyncio.gather(*(proc.wait() for proc in self._procs)), remaining)
            await asyncio.gather(*self._drains, return_exceptions=True)
        except asyncio.TimeoutError:
            self._timed_out = True
            self.kill()
            raise ProcessTimeout(self.jobs[0].tool.name, self.timeout) from None
        self._finished = True

        for job, proc, buffer in zip(self.jobs, self._procs, self._stderr):
            job.returncode = proc.returncode
            job.stderr = _tail(buffer)
            record_job_completed(job.tool.name, "success" if proc.returncode == 0 else "failure")

        failed = [job for job in self.jobs if job.returncode != 0]
        if not failed:
            return
        # An upstream that died writing into a closed pipe only failed because its reader did.
        culprit = next((job for job in failed[:-1] if not job.lost_reader()), failed[-1])
        logger.warning(
            "pipeline_failed",
            tool=culprit.tool.name,
            job_id=culprit.job_id,
            returncodes=[job.returncode for job in self.jobs],
        )
        raise culprit.failure()

    def kill(self) -> None:
        """Terminate every stage; used on client disconnect, timeout and error."""

        for proc in self._procs:
            _kill(proc)
        for task in self._drains:
            task.cancel()
        if self._procs and not self._finished:
            self._finished = True
            status = "timeout" if self._timed_out else "cancelled"
            for job in self.jobs[: len(self._procs)]:
                record_job_completed(job.tool.name, status)
            logger.info("pipeline_killed", tools=[job.tool.name for job in self.jobs], status=status)
