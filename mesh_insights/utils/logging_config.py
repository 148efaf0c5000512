"""
Structured logging configuration for the insights collector.

Features:
- JSON structured logging for production
- Colored console logging for development
- Context propagation (session / component fields)
- Duration logging decorator
"""

from __future__ import annotations

import inspect
import json
import logging
import os
import sys
import time
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar

_component: ContextVar[Optional[str]] = ContextVar("component", default=None)
_extra_context: ContextVar[Dict[str, Any]] = ContextVar("extra_context", default={})

T = TypeVar("T")

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_STANDARD_FIELDS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message",
}


def set_component(component: str) -> None:
    """Set the component name attached to subsequent log lines."""
    _component.set(component)


def set_context(**kwargs: Any) -> None:
    """Set additional context fields."""
    current = _extra_context.get().copy()
    current.update(kwargs)
    _extra_context.set(current)


def clear_context() -> None:
    """Clear extra context."""
    _component.set(None)
    _extra_context.set({})


class StructuredFormatter(logging.Formatter):
    """
    JSON structured log formatter for production.

    Output format:
    {
        "timestamp": "2024-12-22T02:15:30.123456Z",
        "level": "INFO",
        "logger": "mesh_insights.orchestration.flusher",
        "message": "[Flusher] Delivered 100 events",
        "component": "flusher",
        "extra": {...}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        component = _component.get()
        extra = _extra_context.get()
        if component:
            log_data["component"] = component
        if extra:
            log_data["context"] = extra

        record_extras = {
            k: v for k, v in record.__dict__.items()
            if k not in _STANDARD_FIELDS and not k.startswith("_")
        }
        if record_extras:
            log_data["extra"] = record_extras

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class RichConsoleFormatter(logging.Formatter):
    """
    Console formatter for development.

    Lines look like ``12:00:01.250 INFO  mesh_insights.orchestration.flusher
    [flusher task=flush]: [Flusher] Delivered 3 events``; the level is colored
    unless ``use_color`` is off.
    """

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"
    DIM = "\033[2m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def _paint(self, text: str, code: str) -> str:
        return f"{code}{text}{self.RESET}" if self.use_color and code else text

    def _context_label(self) -> str:
        parts = [_component.get() or ""]
        parts.extend(f"{k}={v}" for k, v in _extra_context.get().items())
        label = " ".join(p for p in parts if p)
        return f" [{label}]" if label else ""

    def format(self, record: logging.LogRecord) -> str:
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        level = self._paint(f"{record.levelname:<5}", self.LEVEL_COLORS.get(record.levelno, ""))

        output = (
            f"{self._paint(clock, self.DIM)} {level} "
            f"{self._paint(record.name, self.DIM)}{self._context_label()}: "
            f"{record.getMessage()}"
        )
        if record.exc_info:
            output = f"{output}\n{self.formatException(record.exc_info)}"
        return output


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = field(
        default_factory=lambda: os.getenv("MESH_INSIGHTS_LOG_LEVEL", "INFO")
    )
    format: str = field(
        default_factory=lambda: os.getenv("MESH_INSIGHTS_LOG_FORMAT", "rich")
    )  # "rich" or "json"

    log_file: Optional[Path] = field(
        default_factory=lambda: Path(os.getenv("MESH_INSIGHTS_LOG_FILE", ""))
        if os.getenv("MESH_INSIGHTS_LOG_FILE") else None
    )
    max_file_size_mb: int = 20
    backup_count: int = 3

    console_enabled: bool = True

    quiet_loggers: list = field(
        default_factory=lambda: [
            "aiohttp",
            "asyncio",
        ]
    )


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """
    Configure logging for the host process.

    Args:
        config: Logging configuration. Uses defaults if None.
    """
    if config is None:
        config = LoggingConfig()

    level = getattr(logging, config.level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if config.console_enabled:
        console_handler = logging.StreamHandler(sys.stderr)
        if config.format == "json":
            console_handler.setFormatter(StructuredFormatter())
        else:
            console_handler.setFormatter(RichConsoleFormatter(use_color=sys.stderr.isatty()))
        root_logger.addHandler(console_handler)

    if config.log_file:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)

        from logging.handlers import RotatingFileHandler

        file_handler = RotatingFileHandler(
            config.log_file,
            maxBytes=config.max_file_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
        )
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    for logger_name in config.quiet_loggers:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    logging.getLogger("mesh_insights").setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)


class LogContext:
    """
    Context manager for temporary log context.

    Example:
        with LogContext(task="flush"):
            logger.info("Started")  # Includes task
        logger.info("Done")  # No longer includes task
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs
        self._previous: Dict[str, Any] = {}

    def __enter__(self) -> "LogContext":
        self._previous = _extra_context.get().copy()
        new_context = self._previous.copy()
        new_context.update(self._context)
        _extra_context.set(new_context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        _extra_context.set(self._previous)


def log_duration(
    logger: logging.Logger,
    level: int = logging.DEBUG,
    message: str = "Operation completed",
) -> Callable:
    """
    Decorator to log function duration.

    Example:
        @log_duration(logger, message="Flush")
        async def flush():
            ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def async_wrapper(*args, **kwargs) -> T:
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                duration = (time.perf_counter() - start) * 1000
                logger.error(
                    f"{message} failed ({duration:.2f}ms): {e}",
                    extra={"duration_ms": duration, "function": func.__name__},
                )
                raise
            duration = (time.perf_counter() - start) * 1000
            logger.log(
                level,
                f"{message} ({duration:.2f}ms)",
                extra={"duration_ms": duration, "function": func.__name__},
            )
            return result

        @wraps(func)
        def sync_wrapper(*args, **kwargs) -> T:
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration = (time.perf_counter() - start) * 1000
                logger.error(
                    f"{message} failed ({duration:.2f}ms): {e}",
                    extra={"duration_ms": duration, "function": func.__name__},
                )
                raise
            duration = (time.perf_counter() - start) * 1000
            logger.log(
                level,
                f"{message} ({duration:.2f}ms)",
                extra={"duration_ms": duration, "function": func.__name__},
            )
            return result

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
