"""Completion notification hook."""

from __future__ import annotations

from typing import Protocol

import structlog

logger = structlog.get_logger(__name__)


class Notifier(Protocol):
    def notify(self, message: str) -> None: ...


class LoggingNotifier:
    """Default notifier: records the message in the log.

    Desktop delivery lives outside this package; plug a real notifier into
    the runtime to replace this one.
    """

    def notify(self, message: str) -> None:
        logger.info("Notification.", message=message)


def completion_message(command_line: str, exit_code: int | None) -> str:
    outcome = "successfully" if exit_code == 0 else "with an error"
    return f'The command "{command_line}" has been finished {outcome}.'
