"""Structlog configuration helpers."""

from __future__ import annotations

import logging as std_logging
import sys

import structlog

from taskwright.lib.context import Verbosity

_LEVELS: dict[Verbosity, int] = {
    Verbosity.QUIET: std_logging.ERROR,
    # Failed commands are reported at warning level, so they stay visible.
    Verbosity.NORMAL: std_logging.WARNING,
    Verbosity.VERBOSE: std_logging.INFO,
    Verbosity.VERY_VERBOSE: std_logging.DEBUG,
    Verbosity.DEBUG: std_logging.DEBUG,
}


def level_from_verbosity(verbosity: Verbosity | int) -> int:
    clamped = min(max(int(verbosity), Verbosity.QUIET), Verbosity.DEBUG)
    return _LEVELS[Verbosity(clamped)]


def configure_logging(
    json_mode: bool = False,
    verbosity: Verbosity | int = Verbosity.NORMAL,
) -> None:
    """Configure structlog and stdlib logging for CLI use."""

    level = level_from_verbosity(verbosity)
    # Route log output to stderr so it never mixes with child process stdout.
    handler = std_logging.StreamHandler(sys.stderr)
    handler.setFormatter(std_logging.Formatter("%(message)s"))
    std_logging.basicConfig(level=level, handlers=[handler])

    renderer: structlog.typing.Processor = (
        structlog.processors.JSONRenderer() if json_mode else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
