"""Centralized logging configuration for ptybroker.

Every module logs through ``logging.getLogger(__name__)``; this module only
decides where records go and how they look. Call ``configure_logging()``
once from an entry point (the CLI does this), never from library code.

Usage:
    from ptybroker.core.logging_config import configure_logging

    configure_logging(level="DEBUG")

Environment Variables:
    PTYBROKER_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    PTYBROKER_LOG_FORMAT: Output format ("text" or "json")
    PTYBROKER_LOG_FILE: Optional log file path

Session records carry ``session_id`` as an ``extra`` field, which the JSON
formatter emits under ``"extra"``. Terminal payloads are never logged, only
their sizes.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime
from typing import Any, Literal

TEXT_FORMAT = "%(asctime)s.%(msecs)03d - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("aiohttp.access", "asyncio")

_STANDARD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)

_configured = False


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    {
        "timestamp": "2026-10-19T14:30:00.123456",
        "level": "INFO",
        "logger": "ptybroker.core.session",
        "message": "Session active",
        "extra": {"session_id": "..."}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra = {k: v for k, v in record.__dict__.items() if k not in _STANDARD_ATTRS}
        if extra:
            log_data["extra"] = extra

        return json.dumps(log_data, default=str)


def configure_logging(
    level: str | None = None,
    format: Literal["text", "json"] | None = None,
    file_path: str | None = None,
    force: bool = False,
) -> None:
    """Configure the root logger.

    Subsequent calls are ignored unless ``force=True``. Explicit arguments
    win over the PTYBROKER_LOG_* environment variables.

    Args:
        level: Log level. Defaults to PTYBROKER_LOG_LEVEL or "INFO".
        format: "text" or "json". Defaults to PTYBROKER_LOG_FORMAT or "text".
        file_path: Optional log file. Defaults to PTYBROKER_LOG_FILE.
        force: Reconfigure even if already configured.
    """
    global _configured
    if _configured and not force:
        return

    level = level or os.environ.get("PTYBROKER_LOG_LEVEL", "INFO")
    format = format or os.environ.get("PTYBROKER_LOG_FORMAT", "text")  # type: ignore[assignment]
    file_path = file_path or os.environ.get("PTYBROKER_LOG_FILE")

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    if format == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if file_path:
        file_handler = logging.FileHandler(file_path)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if root_logger.level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True
