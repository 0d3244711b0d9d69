"""Background removal through a rembg server or Replicate."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict

import requests

from ..config import BackgroundRemovalSettings
from ..errors import ProcessFailed, ProcessTimeout, ToolNotFound

logger = logging.getLogger(__name__)

BACKENDS = ("local", "replicate")
REPLICATE_TOKEN_ENV = "REPLICATE_API_TOKEN"
PENDING_STATES = {"starting", "processing"}


@dataclass(frozen=True)
class BackgroundResult:
    data: bytes
    backend: str


def _error_text(response: requests.Response) -> str:
    return response.text.strip() or "(no body)"


def _remove_local(image: bytes, filename: str, settings: BackgroundRemovalSettings) -> BackgroundResult:
    base = settings.rembg_url.rstrip("/")
    last_error = "rembg server unreachable"
    for path in settings.rembg_paths:
        try:
            response = requests.post(
                f"{base}{path}",
                files={"file": (filename, image)},
                timeout=settings.request_timeout_sec,
            )
        except requests.RequestException as exc:
            raise ProcessFailed("rembg", None, message=f"rembg server unreachable: {exc}") from exc
        if response.ok:
            return BackgroundResult(response.content, f"local-rembg{path}")
        last_error = f"rembg server error {response.status_code} on {path}: {_error_text(response)}"
        # Other paths are only worth trying when this one does not exist.
        if response.status_code != 404:
            break
    raise ProcessFailed("rembg", None, message=last_error)


def _replicate_token(settings: BackgroundRemovalSettings) -> str:
    token = settings.replicate_api_token or os.getenv(REPLICATE_TOKEN_ENV)
    if not token:
        raise ToolNotFound("replicate", REPLICATE_TOKEN_ENV, detail=f"{REPLICATE_TOKEN_ENV} not set")
    return token


def _replicate_call(method: str, url: str, settings: BackgroundRemovalSettings, **kwargs: Any) -> Dict[str, Any]:
    try:
        response = requests.request(method, url, timeout=settings.request_timeout_sec, **kwargs)
    except requests.RequestException as exc:
        raise ProcessFailed("replicate", None, message=f"Replicate unreachable: {exc}") from exc
    if not response.ok:
        raise ProcessFailed(
            "replicate",
            None,
            message=f"Replicate request failed {response.status_code}: {_error_text(response)}",
        )
    return response.json()


def _remove_replicate(image: bytes, filename: str, settings: BackgroundRemovalSettings) -> BackgroundResult:
    headers = {"Authorization": f"Bearer {_replicate_token(settings)}"}
    base = settings.replicate_base_url.rstrip("/")

    upload = _replicate_call("POST", f"{base}/files", settings, headers=headers, files={"file": (filename, image)})
    image_url = upload.get("url") or (upload.get("urls") or {}).get("get")
    prediction = _replicate_call(
        "POST",
        f"{base}/predictions",
        settings,
        headers=headers,
        json={"model": settings.replicate_model, "input": {"image": image_url}},
    )

    polls = 0
    while prediction.get("status") in PENDING_STATES:
        if polls >= settings.max_polls:
            raise ProcessTimeout("replicate", settings.poll_interval_sec * settings.max_polls)
        time.sleep(settings.poll_interval_sec)
        prediction = _replicate_call("GET", f"{base}/predictions/{prediction['id']}", settings, headers=headers)
        polls += 1

    if prediction.get("status") != "succeeded":
        detail = prediction.get("error") or ""
        raise ProcessFailed("replicate", None, message=f"Replicate failed: {prediction.get('status')} {detail}".strip())

    output = prediction.get("output")
    output_url = output[0] if isinstance(output, list) else output
    if not output_url:
        raise ProcessFailed("replicate", None, message="Replicate returned no output")
    try:
        result = requests.get(output_url, timeout=settings.request_timeout_sec)
    except requests.RequestException as exc:
        raise ProcessFailed("replicate", None, message=f"Fetch output failed: {exc}") from exc
    if not result.ok:
        raise ProcessFailed("replicate", None, message=f"Fetch output failed {result.status_code}")
    return BackgroundResult(result.content, "replicate")


def remove_background(image: bytes, filename: str, settings: BackgroundRemovalSettings) -> BackgroundResult:
    """Blocking; call through the threadpool from request handlers."""

    backend = settings.backend.lower()
    if backend not in BACKENDS:
        raise ToolNotFound(settings.backend, detail=f"Unknown background removal backend: {settings.backend}")
    logger.info("Removing background from %s via %s", filename, backend)
    if backend == "replicate":
        return _remove_replicate(image, filename, settings)
    return _remove_local(image, filename, settings)
