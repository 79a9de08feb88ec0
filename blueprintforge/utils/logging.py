"""
Unified logging system for the blueprintforge package.

This module provides a standardized logging interface for all components
of the generation pipeline with consistent formatting and a correlation id
that ties every event of one logical generation request together.

Usage:
    from blueprintforge.utils.logging import get_logger, LogContext

    logger = get_logger(__name__)

    with LogContext(logger, correlation_id="gen-123"):
        logger.info(
            "Provider call succeeded",
            extra={"event": "provider.success", "provider": "primary"},
        )
"""

import contextvars
import json
import logging
import os
import sys
import uuid
from typing import Any, Dict, Optional, Union

# Attributes every LogRecord carries; anything else was passed through `extra`.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "request_id", "correlation_id", "context"}

_log_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "blueprintforge_log_context", default={}
)


def new_correlation_id() -> str:
    """Return a fresh correlation id for one logical request."""
    return uuid.uuid4().hex


def get_log_context() -> Dict[str, Any]:
    """Return the context fields bound to the current task."""
    return dict(_log_context.get())


class RequestContextFilter(logging.Filter):
    """
    Filter that adds request context to log records.

    The correlation id bound by LogContext wins over the filter's own
    default id so that concurrent requests stay distinguishable.
    """

    def __init__(self, request_id: Optional[str] = None):
        super().__init__()
        self.request_id = request_id or "-"

    def filter(self, record):
        context = _log_context.get()
        record.correlation_id = context.get("correlation_id", self.request_id)
        record.request_id = getattr(record, "request_id", record.correlation_id)
        record.context = {
            key: value for key, value in context.items() if key != "correlation_id"
        }
        return True


class JsonFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.
    """

    def format(self, record):
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "correlation_id": getattr(record, "correlation_id", "-"),
        }

        log_data.update(getattr(record, "context", {}) or {})

        # Fields passed via `extra=` become plain record attributes
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logger(
    name: str,
    level: Union[int, str] = None,
    log_format: str = None,
    request_id: Optional[str] = None,
    add_console_handler: bool = True,
    add_file_handler: bool = False,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Configure and return a logger with the specified settings.

    Args:
        name: The name of the logger (usually __name__)
        level: The logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: The format to use (json or text)
        request_id: Default id used when no correlation id is bound
        add_console_handler: Whether to add a console handler
        add_file_handler: Whether to add a file handler
        log_file: Path to the log file (if add_file_handler is True)

    Returns:
        A configured logger instance
    """
    level = level or os.getenv("LOG_LEVEL", "INFO")
    log_format = log_format or os.getenv("LOG_FORMAT", "json")

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Remove existing handlers and filters to avoid duplicates
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    for existing in logger.filters[:]:
        if isinstance(existing, RequestContextFilter):
            logger.removeFilter(existing)

    logger.addFilter(RequestContextFilter(request_id))

    text_formatter = logging.Formatter(
        "%(asctime)s - %(levelname)s - [%(correlation_id)s] - %(name)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    formatter = JsonFormatter() if log_format.lower() == "json" else text_formatter

    if add_console_handler:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if add_file_handler and log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(
    name: str, level: Union[int, str] = None, request_id: Optional[str] = None
) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: The name of the logger (usually __name__)
        level: Override the default logging level for this logger
        request_id: Default id used when no correlation id is bound

    Returns:
        A configured logger instance
    """
    return setup_logger(name, level=level, request_id=request_id)


class LogContext:
    """
    Context manager for binding context data to every log line.

    Bindings live in a context variable, so each asyncio task sees only
    its own correlation id even when requests run concurrently.

    Usage:
        with LogContext(logger, correlation_id="abc", stage="primary"):
            logger.info("Calling provider")  # Will include the context data
    """

    def __init__(self, logger: logging.Logger, **context):
        self.logger = logger
        self.context = context
        self._token = None

    def __enter__(self):
        merged = dict(_log_context.get())
        merged.update(self.context)
        self._token = _log_context.set(merged)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _log_context.reset(self._token)
        self._token = None
