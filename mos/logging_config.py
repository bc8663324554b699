"""structlog setup for entry points (CLI and API)."""

import logging

import structlog

from .config import LOG_LEVEL


def configure_logging(level: str | None = None) -> None:
    """Install the console renderer with ISO timestamps and level filtering."""
    log_level = logging.getLevelName((level or LOG_LEVEL).upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
    )
