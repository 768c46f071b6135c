"""Logging setup for pytend.

Everything goes to stderr: helper generations share their stdout with the
command they launch, so nothing of ours may ever land there.
"""

import logging
import sys

import structlog

from pytend.config import settings


def configure_logging(level: str | None = None, json: bool | None = None) -> None:
    """
    Configure structlog for the current process.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ...). Defaults to settings.
        json: Render JSON lines instead of the console format. Defaults to settings.
    """
    level_name = (level or settings.log_level).upper()
    use_json = settings.log_json if json is None else json

    renderer = (
        structlog.processors.JSONRenderer()
        if use_json
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level_name)
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    """Return a logger bound to the given component name."""
    return structlog.get_logger(name)
