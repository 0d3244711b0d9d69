"""Structured logging: JSON lines on disk, readable lines on the console.

stdlib records (uvicorn, routes, tools) and structlog events (pipeline
stages) pass through the same processor chain, so a ``process_failed``
event and a ``logging.warning`` call share timestamp and level fields.
"""

from __future__ import annotations

import logging
import logging.config
from pathlib import Path
from typing import Any, Dict, List

import structlog

from .config import LoggingSettings

LOG_FILE_NAME = "tool-converter.log"


def _shared_processors() -> List[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]


def _formatter(renderer: Any, shared: List[Any]) -> Dict[str, Any]:
    return {
        "()": structlog.stdlib.ProcessorFormatter,
        "foreign_pre_chain": shared,
        "processors": [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    }


def configure_logging(settings: LoggingSettings) -> None:
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    level = settings.level.upper()
    shared = _shared_processors()

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": _formatter(structlog.processors.JSONRenderer(), shared),
                "console": _formatter(structlog.dev.ConsoleRenderer(colors=False), shared),
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "console",
                    "level": level,
                },
                "file": {
                    "class": "logging.handlers.RotatingFileHandler",
                    "filename": str(log_dir / LOG_FILE_NAME),
                    "formatter": "json",
                    "maxBytes": settings.max_log_file_size_mb * 1024 * 1024,
                    "backupCount": settings.backup_count,
                    "level": level,
                },
            },
            "root": {"handlers": ["console", "file"], "level": level},
        }
    )

    structlog.configure(
        processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level, logging.INFO)),
        cache_logger_on_first_use=True,
    )
