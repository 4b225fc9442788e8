"""Structured logging setup for the synchronizer process."""

import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

from index_sync.models.config import LoggingConfig

# Libraries whose INFO output drowns the synchronizer's own events.
NOISY_LOGGERS = ("httpx", "httpcore", "asyncpg", "uvicorn.access")

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


def render_datetimes(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    """Render datetime values, such as watermarks, as ISO 8601 strings."""
    for key, value in event_dict.items():
        if isinstance(value, datetime):
            event_dict[key] = value.isoformat()
    return event_dict


def shared_processors() -> list[Processor]:
    """Processors applied to every event before it is rendered."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        render_datetimes,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.CallsiteParameterAdder(
            parameters=[
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.LINENO,
                structlog.processors.CallsiteParameter.FUNC_NAME,
            ],
        ),
    ]


def _renderer(json_logs: bool) -> Processor:
    if json_logs:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stdout.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def _configure_stdlib(level: int, log_file: str | None) -> None:
    logging.basicConfig(format="%(message)s", level=level, stream=sys.stdout)

    if log_file:
        file_handler = RotatingFileHandler(
            log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS
        )
        file_handler.setLevel(level)
        logging.root.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def configure_logging(
    log_level: str = "INFO",
    json_logs: bool = True,
    log_file: str | None = None,
) -> None:
    """
    Route structlog events through the standard library root logger.

    Events are written to stdout, and also to a rotating file when
    ``log_file`` is set. Each event is one JSON object per line unless
    ``json_logs`` is False, in which case the console renderer is used.
    HTTP and database driver loggers never log below WARNING.

    Args:
        log_level: Level name; unknown names fall back to INFO
        json_logs: Render JSON lines instead of console output
        log_file: Optional path of a rotating log file
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    _configure_stdlib(level, log_file)

    structlog.configure(
        processors=[*shared_processors(), _renderer(json_logs)],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging_from_config(config: LoggingConfig) -> None:
    configure_logging(
        log_level=config.log_level,
        json_logs=config.json_logs,
        log_file=config.log_file,
    )
