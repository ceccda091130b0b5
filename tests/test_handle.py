"""Process handle bookkeeping and failure rendering."""

from __future__ import annotations

import signal
from pathlib import Path

from taskwright.lib.exec.errors import FailureDetail, ProcessFailure
from taskwright.lib.exec.handle import ExternalProcessHandle, ProcessState


def _handle(command: str | tuple[str, ...] = ("echo", "hello world")) -> ExternalProcessHandle:
    return ExternalProcessHandle(
        command=command,
        environment={},
        working_directory=Path("/srv/app"),
    )


def test_command_line_quotes_arguments() -> None:
    assert _handle().command_line == "echo 'hello world'"
    assert _handle("echo $HOME").command_line == "echo $HOME"


def test_handles_get_distinct_ids_and_compare_by_identity() -> None:
    first = _handle()
    second = _handle()

    assert first.handle_id != second.handle_id
    assert first != second
    assert first == first


def test_lifecycle_states() -> None:
    handle = _handle()
    assert handle.state == ProcessState.PENDING
    assert handle.duration_seconds is None

    handle.mark_running(4242)
    assert handle.is_running
    assert handle.pid == 4242

    handle.mark_finished(0)
    assert handle.state == ProcessState.EXITED
    assert handle.successful
    assert handle.duration_seconds is not None


def test_signal_exit_is_mapped_to_shell_convention() -> None:
    handle = _handle()
    handle.mark_running(1)

    handle.mark_finished(-signal.SIGTERM)

    assert handle.state == ProcessState.KILLED
    assert handle.exit_code == 128 + signal.SIGTERM
    assert handle.termination_signal == signal.SIGTERM


def test_timed_out_state_wins_over_killed() -> None:
    handle = _handle()
    handle.mark_running(1)

    handle.mark_finished(-signal.SIGTERM, timed_out=True)

    assert handle.state == ProcessState.TIMED_OUT
    assert handle.termination_signal is None


def test_captured_output_is_kept_per_stream() -> None:
    handle = _handle()

    handle.append_output("out", b"one ")
    handle.append_output("err", b"bad")
    handle.append_output("out", b"two")

    assert handle.output == "one two"
    assert handle.error_output == "bad"


def test_full_failure_truncates_long_output() -> None:
    handle = _handle()
    handle.mark_running(1)
    handle.append_output("out", b"x" * 5000 + b"TAIL")
    handle.mark_finished(2)

    message = str(ProcessFailure(handle, detail=FailureDetail.FULL))

    assert "Exit Code: 2 (exited)" in message
    assert "Working directory: /srv/app" in message
    assert message.endswith("TAIL")
    assert "x" * 4500 not in message
    assert "Error Output:" not in message
