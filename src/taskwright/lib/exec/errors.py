"""Failure taxonomy for process execution and readiness probes."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskwright.lib.exec.handle import ExternalProcessHandle

_OUTPUT_EXCERPT_CHARS = 4000


class TaskwrightError(Exception):
    """Base class for every failure raised by the execution core."""


class ConfigurationError(TaskwrightError, ValueError):
    """Mutually exclusive or duplicated arguments, detected before any spawn."""


class ContextNotInitializedError(ConfigurationError):
    """Raised when no execution context was established for the current run."""

    def __init__(self) -> None:
        super().__init__("No execution context has been established for this run.")


class FailureDetail(StrEnum):
    TERSE = "terse"
    FULL = "full"


def _excerpt(raw: bytes) -> str:
    text = raw.decode("utf-8", errors="replace")
    if len(text) <= _OUTPUT_EXCERPT_CHARS:
        return text
    return f"...{text[-_OUTPUT_EXCERPT_CHARS:]}"


class ProcessFailure(TaskwrightError):
    """A command exited non-zero while failures were not allowed.

    The detail level only changes the rendered message; the handle (with its
    captured output and exit code) is always attached.
    """

    def __init__(
        self,
        handle: ExternalProcessHandle,
        *,
        detail: FailureDetail = FailureDetail.TERSE,
    ) -> None:
        self.handle = handle
        self.detail = detail
        super().__init__(self._render())

    @property
    def exit_code(self) -> int | None:
        return self.handle.exit_code

    def _render(self) -> str:
        handle = self.handle
        if self.detail == FailureDetail.TERSE:
            return f'The command "{handle.command_line}" failed.'

        lines = [
            f'The command "{handle.command_line}" failed.',
            "",
            f"Exit Code: {handle.exit_code} ({handle.state})",
            "",
            f"Working directory: {handle.working_directory or '.'}",
        ]
        if handle.captured_stdout:
            lines.extend(["", "Output:", "================", _excerpt(handle.captured_stdout)])
        if handle.captured_stderr:
            lines.extend(
                ["", "Error Output:", "================", _excerpt(handle.captured_stderr)]
            )
        return "\n".join(lines)


class WaitForError(TaskwrightError):
    """Common base for the two ways a readiness probe can give up."""

    def __init__(self, reason: str, *, timeout: float, message: str | None = None) -> None:
        self.timeout = timeout
        self.message = message
        subject = message or "wait_for"
        super().__init__(f"{subject}: {reason}")


class TimeoutReached(WaitForError):
    """The deadline passed while the probed condition stayed false."""

    def __init__(self, *, timeout: float, message: str | None = None) -> None:
        super().__init__(f"timeout of {timeout:g}s reached", timeout=timeout, message=message)


class ExitedBeforeTimeout(WaitForError):
    """The probe reported the target will never become ready."""

    def __init__(self, *, timeout: float, message: str | None = None) -> None:
        super().__init__(
            f"gave up before the {timeout:g}s timeout", timeout=timeout, message=message
        )


class SignalHandlerError(TaskwrightError):
    """A bound signal handler raised; the original exception is chained."""

    def __init__(self, signum: int, handler_name: str) -> None:
        self.signum = signum
        self.handler_name = handler_name
        super().__init__(f"Signal handler {handler_name!r} failed for signal {signum}.")
