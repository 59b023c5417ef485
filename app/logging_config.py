"""
Logging configuration for the feed pipeline.

Two output formats:
- Production: one JSON object per line for log shippers
- Development: colored, human-readable lines

Usage:
    from app.logging_config import configure_logging, log_timing

    configure_logging()  # Call once at startup

    @log_timing
    def refresh():
        ...
"""

import functools
import json
import logging
import time
from datetime import UTC, datetime
from typing import Any, Callable, Dict, Optional

from . import config

# Attributes every LogRecord carries; anything else was passed via ``extra``
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "taskName"}

# Context keys shown by the development formatter
_DEV_EXTRAS = ("feed_id", "url", "status_code", "items_count", "duration_ms")


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production environments."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRIBUTES:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class DevFormatter(logging.Formatter):
    """Human-readable formatter for development environments."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        base = f"{timestamp} {color}{record.levelname:8}{self.RESET} [{record.name}] {record.getMessage()}"

        extras = []
        for key in _DEV_EXTRAS:
            value = getattr(record, key, None)
            if value in (None, ""):
                continue
            if key == "duration_ms":
                extras.append(f"{value}ms")
            else:
                extras.append(f"{key}={value}")

        if extras:
            base += f" ({', '.join(extras)})"

        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)

        return base


def configure_logging(
    level: Optional[str] = None,
    force_json: bool = False,
    force_dev: bool = False,
) -> None:
    """
    Configure application-wide logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL.
        force_json: Force JSON formatting regardless of environment.
        force_dev: Force development formatting regardless of environment.
    """
    log_level = level or config.LOG_LEVEL

    if force_json:
        use_json = True
    elif force_dev:
        use_json = False
    else:
        use_json = config.ENVIRONMENT == "production"

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if use_json else DevFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # Suppress noisy third-party loggers
    for noisy_logger in ("httpx", "httpcore", "sqlalchemy.engine"):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={
            "environment": config.ENVIRONMENT,
            "log_level": log_level,
            "format": "json" if use_json else "dev",
        },
    )


def log_timing(operation: Optional[str] = None) -> Callable:
    """
    Decorator to log function execution time.

    Usage:
        @log_timing
        def fetch():
            ...

        @log_timing(operation="Feed refresh")
        def refresh_feed(session, feed):
            ...
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            logger = logging.getLogger(func.__module__)
            op_name = operation or func.__name__

            start_time = time.perf_counter()

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration_ms = (time.perf_counter() - start_time) * 1000
                logger.error(
                    f"{op_name} failed: {e}",
                    extra={"duration_ms": round(duration_ms, 2)},
                )
                raise

            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                f"{op_name} completed", extra={"duration_ms": round(duration_ms, 2)}
            )
            return result

        return wrapper

    # Handle both @log_timing and @log_timing()
    if callable(operation):
        func = operation
        operation = None
        return decorator(func)

    return decorator
