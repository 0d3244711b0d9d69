"""Prometheus metrics and tool availability probes."""

from __future__ import annotations

import logging
import os
from typing import Dict

from prometheus_client import Counter, Gauge, start_http_server

from .config import Settings
from .pipeline.locator import KNOWN_TOOLS, ToolLocator

logger = logging.getLogger(__name__)

JOBS_STARTED = Counter(
    "tool_jobs_started_total",
    "Total number of external tool processes spawned",
    labelnames=("tool",),
)
JOBS_COMPLETED = Counter(
    "tool_jobs_completed_total",
    "Total number of external tool processes finished",
    labelnames=("tool", "status"),
)
ACTIVE_PROCESSES = Gauge(
    "tool_active_processes",
    "Number of external tool processes currently running",
)

_metrics_started = False


def metrics_disabled() -> bool:
    return os.getenv("TOOLS_DISABLE_METRICS", "false").lower() in {"1", "true", "yes"}


def ensure_metrics_server(port: int) -> None:
    global _metrics_started
    if _metrics_started:
        return
    start_http_server(port)
    _metrics_started = True
    logger.info("Prometheus metrics server started", extra={"port": port})


def record_job_started(tool: str) -> None:
    JOBS_STARTED.labels(tool=tool).inc()
    ACTIVE_PROCESSES.inc()


def record_job_completed(tool: str, status: str) -> None:
    JOBS_COMPLETED.labels(tool=tool, status=status).inc()
    ACTIVE_PROCESSES.dec()


def collect_tool_status(settings: Settings, locator: ToolLocator | None = None) -> Dict[str, str]:
    """Report `ok:<provenance>` or `missing` for each known external tool."""

    locator = locator or ToolLocator(settings.tools.paths)
    status: Dict[str, str] = {}
    for name in KNOWN_TOOLS:
        binding = locator.find(name)
        status[name] = f"ok:{binding.provenance}" if binding else "missing"
    return status
