"""Unit tests for metrics helpers and tool availability probes."""

from __future__ import annotations

from prometheus_client import REGISTRY

from tool_converter.monitoring import (
    collect_tool_status,
    ensure_metrics_server,
    metrics_disabled,
    record_job_completed,
    record_job_started,
)


def test_ensure_metrics_server_runs_once(monkeypatch):
    starts: list[int] = []
    monkeypatch.setattr("tool_converter.monitoring._metrics_started", False)
    monkeypatch.setattr("tool_converter.monitoring.start_http_server", lambda port: starts.append(port))

    ensure_metrics_server(9999)
    ensure_metrics_server(9999)

    assert starts == [9999]


def test_metrics_disabled_reads_environment(monkeypatch):
    monkeypatch.setenv("TOOLS_DISABLE_METRICS", "yes")
    assert metrics_disabled() is True

    monkeypatch.setenv("TOOLS_DISABLE_METRICS", "false")
    assert metrics_disabled() is False


def test_job_counters_and_active_gauge():
    def _sample(name, labels=None):
        return REGISTRY.get_sample_value(name, labels or {}) or 0.0

    started = _sample("tool_jobs_started_total", {"tool": "probe-tool"})
    completed = _sample("tool_jobs_completed_total", {"tool": "probe-tool", "status": "success"})
    active = _sample("tool_active_processes")

    record_job_started("probe-tool")
    assert _sample("tool_active_processes") == active + 1
    record_job_completed("probe-tool", "success")

    assert _sample("tool_jobs_started_total", {"tool": "probe-tool"}) == started + 1
    assert _sample("tool_jobs_completed_total", {"tool": "probe-tool", "status": "success"}) == completed + 1
    assert _sample("tool_active_processes") == active


def test_collect_tool_status_reports_provenance(test_settings, make_locator, fake_tool):
    gs = fake_tool("gs", "exit 0\n")

    status = collect_tool_status(test_settings, make_locator(gs=gs))

    assert status["gs"] == "ok:configured"
    assert status["ffmpeg"] == "missing"
    assert set(status) == {"ffmpeg", "gs", "qpdf", "pdfunite", "yt-dlp"}
