"""Error code registry, pipeline exceptions and their HTTP rendering."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response


@dataclass(frozen=True)
class ErrorCodeSpec:
    code: str
    en: str
    status: int
    http_status: int


class ErrorRegistry:
    def __init__(self) -> None:
        self._codes: Dict[str, ErrorCodeSpec] = {}

    def register(self, spec: ErrorCodeSpec) -> None:
        if spec.code in self._codes:
            raise ValueError(f"Error code {spec.code} already registered")
        self._codes[spec.code] = spec

    def get(self, code: str) -> ErrorCodeSpec:
        if code not in self._codes:
            raise KeyError(f"Unknown error code: {code}")
        return self._codes[code]


ERRORS = ErrorRegistry()


def register_default_errors() -> None:
    for spec in (
        ErrorCodeSpec("ERR_INVALID_REQUEST", "Malformed or incomplete request", 4000, status.HTTP_400_BAD_REQUEST),
        ErrorCodeSpec("ERR_UNSUPPORTED_PARAMETER", "Parameter value not allowed", 4001, status.HTTP_400_BAD_REQUEST),
        ErrorCodeSpec("ERR_UNSUPPORTED_OPERATION", "Unsupported target or operation", 4002, status.HTTP_400_BAD_REQUEST),
        ErrorCodeSpec("ERR_PAYLOAD_TOO_LARGE", "Upload exceeds size limit", 4130, 413),
        ErrorCodeSpec("ERR_INPUT_REJECTED", "Input file is corrupt or unreadable", 4220, 422),
        ErrorCodeSpec("ERR_CLIENT_DISCONNECTED", "Client closed the connection", 4990, 499),
        ErrorCodeSpec("ERR_TOOL_NOT_FOUND", "Required external tool is not installed", 5001, status.HTTP_500_INTERNAL_SERVER_ERROR),
        ErrorCodeSpec("ERR_PROCESS_FAILED", "External tool failed", 5002, status.HTTP_500_INTERNAL_SERVER_ERROR),
        ErrorCodeSpec("ERR_PROCESS_TIMEOUT", "Processing timeout", 5040, status.HTTP_504_GATEWAY_TIMEOUT),
    ):
        ERRORS.register(spec)


register_default_errors()


class PipelineError(Exception):
    """Base class for every failure surfaced by a conversion pipeline stage."""

    code = "ERR_PROCESS_FAILED"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.spec.en
        super().__init__(self.message)

    @property
    def spec(self) -> ErrorCodeSpec:
        return ERRORS.get(self.code)

    @property
    def http_status(self) -> int:
        return self.spec.http_status


class InvalidRequest(PipelineError):
    code = "ERR_INVALID_REQUEST"


class UnsupportedParameter(PipelineError):
    code = "ERR_UNSUPPORTED_PARAMETER"


class UnsupportedOperation(PipelineError):
    code = "ERR_UNSUPPORTED_OPERATION"


class PayloadTooLarge(PipelineError):
    code = "ERR_PAYLOAD_TOO_LARGE"

    def __init__(self, limit_bytes: int) -> None:
        self.limit_bytes = limit_bytes
        super().__init__(f"File too large (max ~{limit_bytes // (1024 * 1024)}MB)")


class InputRejected(PipelineError):
    code = "ERR_INPUT_REJECTED"


class ClientDisconnected(PipelineError):
    code = "ERR_CLIENT_DISCONNECTED"


class ToolNotFound(PipelineError):
    code = "ERR_TOOL_NOT_FOUND"

    def __init__(self, tool: str, env_var: str | None = None, detail: str | None = None) -> None:
        self.tool = tool
        self.env_var = env_var
        hint = f" Install it or set {env_var} to its absolute path." if env_var else ""
        super().__init__(detail or f"{tool} not found.{hint}")


class ProcessFailed(PipelineError):
    code = "ERR_PROCESS_FAILED"

    def __init__(self, tool: str, returncode: int | None, stderr: str = "", message: str | None = None) -> None:
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr
        text = stderr.strip()
        super().__init__(message or text or f"{tool} exited with code {returncode}")


class ProcessTimeout(ProcessFailed):
    code = "ERR_PROCESS_TIMEOUT"

    def __init__(self, tool: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(tool, None, message=f"{tool} did not finish within {timeout:g}s")


def wants_json(request: Request) -> bool:
    return "application/json" in (request.headers.get("content-type") or "").lower()


def error_response(exc: PipelineError, *, as_json: bool = False) -> Response:
    headers = {"Cache-Control": "no-store"}
    if as_json:
        return JSONResponse(
            status_code=exc.http_status,
            content={"error": exc.message, "error_code": exc.code},
            headers=headers,
        )
    return PlainTextResponse(exc.message, status_code=exc.http_status, headers=headers)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PipelineError)
    async def _handle_pipeline_error(request: Request, exc: PipelineError) -> Response:
        return error_response(exc, as_json=wants_json(request))
