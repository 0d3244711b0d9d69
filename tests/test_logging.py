"""Log output shape."""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from tool_converter.config import LoggingSettings
from tool_converter.logging import LOG_FILE_NAME, configure_logging


@pytest.fixture()
def log_file(tmp_path):
    configure_logging(LoggingSettings(log_dir=str(tmp_path), level="INFO"))
    yield tmp_path / LOG_FILE_NAME
    for handler in logging.getLogger().handlers:
        handler.close()
    structlog.reset_defaults()


def _records(path) -> list[dict]:
    for handler in logging.getLogger().handlers:
        handler.flush()
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


def test_structlog_events_are_json_lines(log_file):
    structlog.get_logger("tool_converter.pipeline.runner").warning("process_failed", tool="gs", returncode=1)

    record = _records(log_file)[-1]
    assert record["event"] == "process_failed"
    assert record["tool"] == "gs"
    assert record["returncode"] == 1
    assert record["level"] == "warning"
    assert record["logger"] == "tool_converter.pipeline.runner"
    assert "timestamp" in record


def test_stdlib_records_share_the_format(log_file):
    logging.getLogger("tool_converter.tools.pdf_ops").warning("%s failed, trying next backend", "qpdf")
    logging.getLogger("tool_converter.tools.pdf_ops").debug("below threshold")

    records = _records(log_file)
    assert records[-1]["event"] == "qpdf failed, trying next backend"
    assert records[-1]["level"] == "warning"
    assert all(item["event"] != "below threshold" for item in records)
