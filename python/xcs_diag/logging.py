"""
Structured logging for the diagnostic collector.

Features:
- Rolling JSONL log file (one JSON object per line)
- Persistent error log receiving ERROR events with full tracebacks
- Console output in plain or JSON form, no colors
- Structured context binding for correlation across phases
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from xcs_diag.config import get_config

if TYPE_CHECKING:
    from structlog.types import Processor

DEFAULT_LOG_DIR = "logs"
DEFAULT_LOG_FILE = "xcs-diag.jsonl"
DEFAULT_ERROR_LOG_FILE = "xcs-diag-errors.jsonl"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_BACKUP_COUNT = 5


class JSONLRotatingHandler(RotatingFileHandler):
    """Rotating file handler that writes one JSON object per line."""

    def __init__(
        self,
        filename: str | Path,
        max_bytes: int = DEFAULT_MAX_BYTES,
        backup_count: int = DEFAULT_BACKUP_COUNT,
        encoding: str = "utf-8",
    ):
        path = Path(filename)
        path.parent.mkdir(parents=True, exist_ok=True)

        super().__init__(
            filename=str(path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding=encoding,
        )


def _add_service_info(
    _logger: logging.Logger, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Add service metadata to each log entry."""
    event_dict["service"] = "xcs-diag"
    event_dict["hostname"] = os.environ.get("HOSTNAME", "unknown")
    event_dict["pid"] = os.getpid()
    return event_dict


def _add_timestamp_utc(
    _logger: logging.Logger, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Add ISO8601 UTC timestamp."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def setup_logging(
    level: str | None = None,
    format: str | None = None,
    log_file: str | None = None,
    log_dir: str | None = None,
    error_log_file: str | None = None,
    max_bytes: int | None = None,
    backup_count: int | None = None,
    enable_console: bool = True,
    enable_file: bool = True,
) -> None:
    """
    Configure structured logging for the collector.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to config value.
        format: Console format (json, plain). Defaults to config value.
        log_file: JSONL log filename. Defaults to xcs-diag.jsonl.
        log_dir: Directory for log files. Defaults to config value.
        error_log_file: Error log filename. Defaults to config value.
        max_bytes: Maximum size per log file before rotation. Default 10MB.
        backup_count: Number of backup files to keep. Default 5.
        enable_console: Whether to log to console. Default True.
        enable_file: Whether to write the JSONL and error log files. Default True.
    """
    config = get_config()

    level = level or config.logging.level
    format = format or config.logging.format
    log_file = log_file or DEFAULT_LOG_FILE
    log_dir = log_dir or config.logging.log_dir or DEFAULT_LOG_DIR
    error_log_file = error_log_file or config.logging.error_log_file or DEFAULT_ERROR_LOG_FILE
    max_bytes = max_bytes or DEFAULT_MAX_BYTES
    backup_count = backup_count or DEFAULT_BACKUP_COUNT

    log_level = getattr(logging, level.upper(), logging.INFO)

    jsonl_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        _add_timestamp_utc,
        _add_service_info,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    console_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *jsonl_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    handlers: list[logging.Handler] = []

    if enable_file:
        jsonl_formatter = structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=jsonl_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.dict_tracebacks,
                structlog.processors.JSONRenderer(),
            ],
        )

        file_handler = JSONLRotatingHandler(
            filename=get_log_file_path(log_dir, log_file),
            max_bytes=max_bytes,
            backup_count=backup_count,
        )
        file_handler.setFormatter(jsonl_formatter)
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

        # Errors keep their full formatted traceback for later analysis
        error_formatter = structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=jsonl_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
        )

        error_handler = JSONLRotatingHandler(
            filename=get_error_log_path(log_dir, error_log_file),
            max_bytes=max_bytes,
            backup_count=backup_count,
        )
        error_handler.setFormatter(error_formatter)
        error_handler.setLevel(logging.ERROR)
        handlers.append(error_handler)

    if enable_console:
        if format.lower() == "json":
            console_renderer: Processor = structlog.processors.JSONRenderer()
        else:
            console_renderer = structlog.dev.ConsoleRenderer(
                colors=False,
                exception_formatter=structlog.dev.plain_traceback,
            )

        console_formatter = structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=console_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                console_renderer,
            ],
        )

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(console_formatter)
        console_handler.setLevel(log_level)
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        handler.close()
    root_logger.handlers = handlers
    root_logger.setLevel(log_level)

    for lib in ["urllib3", "urllib", "asyncio"]:
        logging.getLogger(lib).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> Any:
    """
    Get a structured logger instance.

    Example:
        logger = get_logger(__name__)
        logger.info("phase_started", phase="logs")
        logger.error("copy_failed", error_code="XCSDIAG_2002")
    """
    return structlog.get_logger(name)


@contextmanager
def with_context(**kwargs: Any) -> Iterator[None]:
    """
    Context manager for temporary context binding.

    Example:
        with with_context(phase="database"):
            logger.info("started")
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield


def get_log_file_path(log_dir: str | None = None, log_file: str | None = None) -> Path:
    """Get the full path to the current JSONL log file."""
    return Path(log_dir or DEFAULT_LOG_DIR) / (log_file or DEFAULT_LOG_FILE)


def get_error_log_path(log_dir: str | None = None, error_log_file: str | None = None) -> Path:
    """Get the full path to the persistent error log."""
    return Path(log_dir or DEFAULT_LOG_DIR) / (error_log_file or DEFAULT_ERROR_LOG_FILE)
