"""Logging configuration and utilities."""

import functools
import logging
import logging.handlers
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import structlog
import colorlog
from structlog.typing import Processor

from ..config.settings import LoggingSettings, get_settings


LOG_COLORS = {
    'DEBUG': 'cyan',
    'INFO': 'green',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'red,bg_white',
}

# Set on every handler installed here so a second setup replaces them.
_HANDLER_MARKER = "_tablesync_handler"


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None,
    settings: Optional[LoggingSettings] = None
) -> None:
    """Configure structlog and the root handlers.

    Explicit arguments override ``settings``, which default to the
    ``TABLESYNC_LOG_`` environment settings.
    """
    settings = settings or get_settings().logging

    level = (log_level or settings.level).upper()
    format_type = log_format or settings.format
    file_path = log_file or settings.file_path

    root = logging.getLogger()
    root.setLevel(getattr(logging, level))
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            root.removeHandler(handler)
            handler.close()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if format_type == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if file_path:
        _install(setup_file_logging(file_path, level))

    _install(setup_console_logging(level))


def _install(handler: logging.Handler) -> None:
    setattr(handler, _HANDLER_MARKER, True)
    logging.getLogger().addHandler(handler)


def setup_file_logging(file_path: str, level: str) -> logging.Handler:
    """Create a rotating file handler.

    Records are already rendered by structlog, so the file holds one
    rendered event per line.
    """
    log_file = Path(file_path)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5,
        encoding="utf-8"
    )
    file_handler.setLevel(getattr(logging, level))
    file_handler.setFormatter(logging.Formatter("%(message)s"))
    return file_handler


def setup_console_logging(level: str) -> logging.Handler:
    """Create a colored stderr handler, colored by record level."""
    console_handler = colorlog.StreamHandler(sys.stderr)
    console_handler.setLevel(getattr(logging, level))
    console_handler.setFormatter(colorlog.ColoredFormatter(
        "%(log_color)s%(message)s",
        reset=True,
        log_colors=LOG_COLORS
    ))
    return console_handler


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class LoggerMixin:
    """Mixin class to add logging capabilities to any class."""

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        return get_logger(self.__class__.__name__)


@contextmanager
def sync_context(**values: Any) -> Iterator[None]:
    """Bind key-value context (``sync_id=...``) to every log event in the block.

    Tasks created inside the block inherit the binding.
    """
    with structlog.contextvars.bound_contextvars(**values):
        yield


def log_async_execution_time(func):
    """Log the duration and outcome of a coroutine function."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        logger = get_logger(func.__module__)
        started = time.perf_counter()

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            logger.error(
                "Operation failed",
                operation=func.__qualname__,
                duration_seconds=round(time.perf_counter() - started, 4),
                error_type=type(e).__name__,
                error=str(e)
            )
            raise

        logger.info(
            "Operation completed",
            operation=func.__qualname__,
            duration_seconds=round(time.perf_counter() - started, 4)
        )
        return result

    return wrapper
