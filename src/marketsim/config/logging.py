"""Structured logging configuration using structlog."""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

APP_NAME = "marketsim"

SIZE_UNITS = {"KB": 1024, "MB": 1024**2, "GB": 1024**3}


def add_app_context(environment: str) -> Processor:
    """Build a processor stamping every event with the app and environment."""

    def processor(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("app", APP_NAME)
        event_dict.setdefault("environment", environment)
        return event_dict

    return processor


def round_durations(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Round ``*_ms`` timings to microsecond precision."""
    for key, value in event_dict.items():
        if key.endswith("_ms") and isinstance(value, float):
            event_dict[key] = round(value, 3)
    return event_dict


def setup_logging(
    level: str = "INFO",
    format_type: str = "structured",
    file_enabled: bool = False,
    file_path: str = "data/marketsim.log",
    max_file_size: str = "10MB",
    backup_count: int = 5,
    environment: str = "development",
) -> None:
    """
    Set up simulator logging with structlog.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: Log format ('structured' or 'plain')
        file_enabled: Whether to also write to a rotating file
        file_path: Path to log file
        max_file_size: Size before rotation, e.g. '10MB'
        backup_count: Number of rotated files to keep
        environment: Stamped on every event next to the app name
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="ISO", utc=True),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context(environment),
        round_durations,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if format_type == "structured":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=environment == "development"))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    if file_enabled:
        _setup_file_logging(file_path, max_file_size, backup_count, log_level)


def _setup_file_logging(
    file_path: str,
    max_file_size: str,
    backup_count: int,
    log_level: int,
) -> None:
    """Attach a rotating file handler to the root logger."""
    log_file = Path(file_path)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        filename=log_file,
        maxBytes=_parse_file_size(max_file_size),
        backupCount=backup_count,
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(logging.Formatter("%(message)s"))

    logging.getLogger().addHandler(file_handler)


def _parse_file_size(size_str: str) -> int:
    """Parse a size such as '512KB' or '10MB' into bytes; bare numbers are bytes."""
    size_str = size_str.strip().upper()
    for unit, multiplier in SIZE_UNITS.items():
        if size_str.endswith(unit):
            return int(size_str[: -len(unit)]) * multiplier
    return int(size_str)


def get_logger(name: str = APP_NAME) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, by default the package logger."""
    return structlog.get_logger(name)


def log_performance(operation: str, duration_ms: float, **context: Any) -> None:
    """
    Log how long a simulator operation took.

    Args:
        operation: Name of the operation, e.g. 'backfill'
        duration_ms: Duration in milliseconds
        **context: Symbol, timeframe and similar fields
    """
    get_logger(f"{APP_NAME}.performance").debug(
        "Operation timed",
        operation=operation,
        duration_ms=duration_ms,
        **context,
    )
