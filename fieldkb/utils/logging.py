"""structlog configuration for the knowledge base.

Log lines go to **stderr**: the operator CLI prints its results (search
hits, statistics) on stdout, and those must stay pipeable.  In development
the ConsoleRenderer is used; with ``APP_ENV=production`` every line is a
JSON object.

The HTTP and database client libraries log every request at INFO.  They
are held at WARNING unless the knowledge base itself runs at DEBUG.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, TextIO

import structlog

if TYPE_CHECKING:
    from fieldkb.config.settings import Settings

_CLIENT_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "openai", "aiosqlite")


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = False,
    stream: TextIO | None = None,
) -> structlog.BoundLogger:
    """Install the structlog processor chain and bridge stdlib logging into it.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR.
        json_output: Render JSON instead of the coloured console format.
        stream: Destination for every log line. Defaults to ``sys.stderr``.

    Returns:
        The root structlog logger.
    """
    level_name = log_level.upper()
    level = logging.getLevelName(level_name)
    out = stream or sys.stderr

    shared: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=out.isatty())
    )

    structlog.configure(
        processors=[*shared, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=out),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(out)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *shared,
                renderer,
            ],
        )
    )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level_name)

    client_level = logging.DEBUG if level_name == "DEBUG" else logging.WARNING
    for name in _CLIENT_LOGGERS:
        logging.getLogger(name).setLevel(client_level)

    return structlog.get_logger()


def configure_logging_from_settings(
    settings: Settings, log_level: str | None = None
) -> structlog.BoundLogger:
    """Configure logging from ``LOG_LEVEL``/``APP_ENV``; *log_level* overrides the former."""
    return configure_logging(
        log_level=log_level or settings.log_level,
        json_output=settings.app_env == "production",
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a logger bound to *name*, configuring defaults on first use."""
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(logger_name=name)
