"""State of one external process owned by a single orchestrator call."""

from __future__ import annotations

import itertools
import shlex
import signal
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Literal

StreamKind = Literal["out", "err"]

_HANDLE_IDS = itertools.count(1)


class ProcessState(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    EXITED = "exited"
    TIMED_OUT = "timed-out"
    KILLED = "killed"


def render_command_line(command: str | tuple[str, ...]) -> str:
    if isinstance(command, str):
        return command
    return shlex.join(command)


@dataclass(eq=False, slots=True)
class ExternalProcessHandle:
    """Command, resolved spawn parameters, captured output and lifecycle state.

    Handles compare by identity; the output multiplexer keys its regions on
    them.
    """

    command: str | tuple[str, ...]
    environment: Mapping[str, str]
    working_directory: Path | None
    timeout: float | None = None
    label: str = "default"
    handle_id: int = field(default_factory=lambda: next(_HANDLE_IDS), init=False)
    state: ProcessState = ProcessState.PENDING
    pid: int | None = None
    exit_code: int | None = None
    started_at: float | None = None
    finished_at: float | None = None
    _stdout: bytearray = field(default_factory=bytearray, init=False, repr=False)
    _stderr: bytearray = field(default_factory=bytearray, init=False, repr=False)

    @property
    def command_line(self) -> str:
        return render_command_line(self.command)

    @property
    def is_shell(self) -> bool:
        return isinstance(self.command, str)

    @property
    def is_running(self) -> bool:
        return self.state == ProcessState.RUNNING

    @property
    def successful(self) -> bool:
        return self.exit_code == 0

    @property
    def captured_stdout(self) -> bytes:
        return bytes(self._stdout)

    @property
    def captured_stderr(self) -> bytes:
        return bytes(self._stderr)

    @property
    def output(self) -> str:
        return self.captured_stdout.decode("utf-8", errors="replace")

    @property
    def error_output(self) -> str:
        return self.captured_stderr.decode("utf-8", errors="replace")

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None:
            return None
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

    def append_output(self, stream: StreamKind, data: bytes) -> None:
        if stream == "out":
            self._stdout.extend(data)
        else:
            self._stderr.extend(data)

    def mark_running(self, pid: int | None) -> None:
        self.pid = pid
        self.started_at = time.monotonic()
        self.state = ProcessState.RUNNING

    def mark_finished(self, raw_return_code: int, *, timed_out: bool = False) -> None:
        """Record the exit status reported by the OS.

        Negative return codes mean the child died from a signal; they are
        mapped to the shell convention 128 + signal number.
        """

        self.finished_at = time.monotonic()
        if raw_return_code < 0:
            self.exit_code = 128 + (-raw_return_code)
            self.state = ProcessState.KILLED
        else:
            self.exit_code = raw_return_code
            self.state = ProcessState.EXITED
        if timed_out:
            self.state = ProcessState.TIMED_OUT

    @property
    def termination_signal(self) -> signal.Signals | None:
        if self.state != ProcessState.KILLED or self.exit_code is None:
            return None
        try:
            return signal.Signals(self.exit_code - 128)
        except ValueError:
            return None
