"""Structured logging configuration using structlog."""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Optional

import structlog
from structlog.types import Processor

_SIZE_UNITS = {"KB": 1024, "MB": 1024**2, "GB": 1024**3}

# Third-party loggers that are chatty at INFO during normal monitoring
_NOISY_LOGGERS = ("apscheduler.executors.default", "apscheduler.scheduler", "httpx", "httpcore")


def setup_logging(
    level: str = "INFO",
    format_type: str = "structured",
    file_enabled: bool = True,
    file_path: str = "data/vigil.log",
    max_file_size: str = "10MB",
    backup_count: int = 5,
) -> None:
    """
    Set up application logging with structlog.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: Log format ('structured' or 'plain')
        file_enabled: Also write logs to a rotating file
        file_path: Path to log file
        max_file_size: Size at which the log file rotates, e.g. '10MB'
        backup_count: Number of rotated files to keep
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        _renderer(format_type, file_enabled),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    if file_enabled:
        _add_file_handler(Path(file_path), _parse_file_size(max_file_size), backup_count, log_level)


def _renderer(format_type: str, file_enabled: bool) -> Processor:
    # File output must stay machine-readable
    if format_type == "structured" and file_enabled:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=format_type == "plain")


def _add_file_handler(log_file: Path, max_bytes: int, backup_count: int, log_level: int) -> None:
    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        filename=log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(logging.Formatter("%(message)s"))
    logging.getLogger().addHandler(file_handler)


def _parse_file_size(size_str: str) -> int:
    """Parse '512KB', '10MB', '1GB' or a plain byte count."""
    size_str = size_str.strip().upper()
    for unit, factor in _SIZE_UNITS.items():
        if size_str.endswith(unit):
            return int(size_str[: -len(unit)]) * factor
    return int(size_str)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name, usually the calling module's ``__name__``

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def log_performance(operation: str, duration_ms: float, **context: Any) -> None:
    """
    Log how long an operation took.

    Args:
        operation: Name of the operation, e.g. ``monitor_tick``
        duration_ms: Duration in milliseconds
        **context: Additional context such as ``symbol``
    """
    get_logger("performance").debug(
        "Performance metric",
        operation=operation,
        duration_ms=round(duration_ms, 3),
        **context,
    )


def log_integrity_issue(logger: structlog.stdlib.BoundLogger, message: str, **context: Any) -> None:
    """Log alert data that should never exist under normal operation."""
    logger.warning(message, integrity=True, **context)
