"""
Logging utilities for imgopt.

All application code logs through loguru's ``logger``. Standard library
loggers used by the server stack (uvicorn, httpx, Pillow) are routed into
loguru by ``InterceptHandler`` so every record shares one format and sink.
"""

import inspect
import logging
import sys
from pathlib import Path

from loguru import logger as _logger

DEFAULT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

# Stdlib loggers redirected to loguru, with the floor applied to each.
# Pillow's plugins log every decoded chunk at DEBUG and httpx logs each request at INFO.
INTERCEPTED_LOGGERS = {
    "uvicorn": None,
    "uvicorn.error": None,
    "uvicorn.access": None,
    "fastapi": None,
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "PIL": "INFO",
}


class InterceptHandler(logging.Handler):
    """Redirects standard library log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        level: str | int
        try:
            level = _logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk out of the logging module so loguru reports the real caller
        frame, depth = inspect.currentframe(), 0
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        _logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def intercept_stdlib_logging(levels: dict[str, str | None] | None = None) -> None:
    """Route stdlib logging into loguru.

    Args:
        levels: Logger name to minimum level; None keeps the logger's own level
    """
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    for name, level in (levels if levels is not None else INTERCEPTED_LOGGERS).items():
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False
        if level is not None:
            std_logger.setLevel(level)


def setup_logging(
    level: str = "INFO",
    format: str | None = None,
    log_to_file: bool = False,
    log_file: str | Path | None = None,
    rotation: str = "20 MB",
    retention: str = "1 week",
    serialize: bool = False,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Minimum log level to capture
        format: Log message format string, ``DEFAULT_FORMAT`` when None
        log_to_file: Whether to log to a file in addition to stderr
        log_file: Path to the log file, created with its parent directory
        rotation: When to rotate log files (size or time)
        retention: How long to keep log files
        serialize: Write the file sink as JSON lines
    """
    format = format or DEFAULT_FORMAT

    _logger.remove()
    _logger.add(
        sys.stderr,
        level=level,
        format=format,
        colorize=sys.stderr.isatty(),
        backtrace=True,
        diagnose=False,
    )

    if log_to_file and log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        _logger.add(
            str(log_path),
            level=level,
            format=format,
            rotation=rotation,
            retention=retention,
            compression="zip",
            serialize=serialize,
            enqueue=True,
        )

    intercept_stdlib_logging()


logger = _logger
