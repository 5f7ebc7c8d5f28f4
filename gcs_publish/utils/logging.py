"""
Logging utilities for gcs-publish.

Provides colorized console logging for interactive runs, JSON logging for
CI log collectors, a per-run correlation ID and an entry/exit decorator.

Features:
    - Structured JSON logging when LOG_FORMAT=json
    - Correlation ID shared by every log line of one upload run
    - Entry/exit decorator with timing
    - Colorized console output through coloredlogs

Example usage:
    >>> from gcs_publish.utils.logging import get_logger, set_correlation_id
    >>>
    >>> logger = get_logger(__name__)
    >>> set_correlation_id("build-1234")
    >>> logger.info("Uploading site/index.html")
"""

import logging
import functools
import json
import os
import uuid
from typing import Any, Callable, TypeVar, cast, Optional, Dict
from datetime import datetime, timezone
from contextvars import ContextVar

import coloredlogs

# Type variable for generic decorator typing
F = TypeVar("F", bound=Callable[..., Any])

# Context variable for correlation ID
_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Attributes every LogRecord carries; anything else came in through ``extra``
_STANDARD_RECORD_FIELDS = frozenset(
    [
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
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
        "message",
        "asctime",
    ]
)


# ============================================================================
# Correlation ID Management
# ============================================================================

def get_correlation_id() -> str:
    """
    Get current correlation ID or generate a new one.

    Returns:
        Current correlation ID (generates a UUID if not set)
    """
    corr_id = _correlation_id.get()
    if corr_id is None:
        corr_id = str(uuid.uuid4())
        _correlation_id.set(corr_id)
    return corr_id


def set_correlation_id(corr_id: str) -> None:
    """
    Set correlation ID for the current context.

    Args:
        corr_id: Correlation ID to set (e.g. the CI build number)
    """
    _correlation_id.set(corr_id)


def clear_correlation_id() -> None:
    """Clear correlation ID for current context."""
    _correlation_id.set(None)


# ============================================================================
# JSON Formatter
# ============================================================================

class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for CI log collectors.

    Example output:
        {
            "timestamp": "2026-01-04T10:30:15.123456Z",
            "level": "INFO",
            "logger": "gcs_publish.uploader.coordinator",
            "message": "Uploaded site/index.html",
            "correlation_id": "build-1234",
            "extra": {"key": "site/index.html", "attempts": 1}
        }
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record as JSON string.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log string
        """
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_data: Dict[str, Any] = {
            "timestamp": timestamp.strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
        }

        log_data["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        extra_fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_RECORD_FIELDS
        }
        if extra_fields:
            log_data["extra"] = extra_fields

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        # CI runners expose these for the build that produced the log line
        log_data["environment"] = {
            "hostname": os.getenv("HOSTNAME", "unknown"),
            "ci_build": os.getenv("DRONE_BUILD_NUMBER", ""),
            "ci_repo": os.getenv("DRONE_REPO", ""),
        }

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO", enable_colors: bool = True) -> None:
    """
    Configure global logging settings for the application.

    JSON output is selected by the LOG_FORMAT environment variable, which is
    read at call time so a CI step can switch formats without code changes.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_colors: Whether to enable colorized console output

    Example:
        >>> os.environ["LOG_FORMAT"] = "json"
        >>> setup_logging(level="INFO")
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    json_format = os.getenv("LOG_FORMAT", "text").lower() == "json"

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    if json_format:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(console_handler)
    elif enable_colors:
        coloredlogs.install(
            level=log_level,
            fmt=LOG_FORMAT,
            datefmt=LOG_DATE_FORMAT,
            logger=root_logger,
        )
    else:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        root_logger.addHandler(console_handler)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def log_function_call(func: F) -> F:
    """
    Decorator that logs function entry and exit at DEBUG level.

    Logs the call arguments on entry, the return value and duration on exit,
    and the exception with traceback on failure (the exception is re-raised).

    Args:
        func: Function to be decorated

    Returns:
        Wrapped function with logging

    Example:
        >>> @log_function_call
        ... def enumerate_files(source_root, ignore=None):
        ...     ...
        >>> # DEBUG - ENTER enumerate_files(source_root='dist', ignore='*.map')
        >>> # DEBUG - EXIT enumerate_files (0.01s)
    """
    logger = get_logger(func.__module__)

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        correlation_id = get_correlation_id()

        arg_names = func.__code__.co_varnames[: func.__code__.co_argcount]
        args_repr = [f"{name}={value!r}" for name, value in zip(arg_names, args)]
        kwargs_repr = [f"{key}={value!r}" for key, value in kwargs.items()]
        all_args = ", ".join(args_repr + kwargs_repr)

        logger.debug(
            f"ENTER {func.__name__}({all_args})",
            extra={
                "function": func.__name__,
                "correlation_id": correlation_id,
                "event": "function_entry",
            },
        )

        start_time = datetime.now()

        try:
            result = func(*args, **kwargs)
        except Exception as error:
            execution_time = (datetime.now() - start_time).total_seconds()
            logger.debug(
                f"ERROR {func.__name__} raised {type(error).__name__}: {error}",
                extra={
                    "function": func.__name__,
                    "duration_seconds": execution_time,
                    "correlation_id": correlation_id,
                    "event": "function_error",
                    "error_type": type(error).__name__,
                },
            )
            raise

        execution_time = (datetime.now() - start_time).total_seconds()
        logger.debug(
            f"EXIT {func.__name__} ({execution_time:.2f}s)",
            extra={
                "function": func.__name__,
                "duration_seconds": execution_time,
                "correlation_id": correlation_id,
                "event": "function_exit",
            },
        )
        return result

    return cast(F, wrapper)
