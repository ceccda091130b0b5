"""Output multiplexer line buffering, prefixes and spinner rendering."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from taskwright.lib.exec.handle import ExternalProcessHandle
from taskwright.lib.exec.output import SPINNER_FRAMES, OutputMultiplexer

if TYPE_CHECKING:
    from conftest import RecordingStream


def _handle(label: str = "default") -> ExternalProcessHandle:
    return ExternalProcessHandle(
        command=("echo", label),
        environment={},
        working_directory=Path("."),
        label=label,
    )


@pytest.fixture
def mux(output_stream: RecordingStream, error_stream: RecordingStream) -> OutputMultiplexer:
    return OutputMultiplexer(output_stream=output_stream, error_stream=error_stream, animate=False)


def test_partial_lines_are_held_until_complete(
    mux: OutputMultiplexer,
    output_stream: RecordingStream,
) -> None:
    handle = _handle()
    mux.init_process(handle)

    mux.write_process_output("out", b"hel", handle)
    assert output_stream.getvalue() == ""

    mux.write_process_output("out", b"lo\nwor", handle)
    assert output_stream.getvalue() == "hello\n"

    mux.finish_process(handle)
    assert output_stream.getvalue() == "hello\nwor\n"
    assert mux.active_count == 0


def test_split_utf8_sequences_are_decoded_once_complete(
    mux: OutputMultiplexer,
    output_stream: RecordingStream,
) -> None:
    handle = _handle()
    mux.init_process(handle)
    encoded = "héllo\n".encode()

    mux.write_process_output("out", encoded[:2], handle)
    mux.write_process_output("out", encoded[2:], handle)

    assert output_stream.getvalue() == "héllo\n"


def test_stderr_goes_to_error_stream(
    mux: OutputMultiplexer,
    output_stream: RecordingStream,
    error_stream: RecordingStream,
) -> None:
    handle = _handle()
    mux.init_process(handle)

    mux.write_process_output("err", b"oops\n", handle)

    assert output_stream.getvalue() == ""
    assert error_stream.getvalue() == "oops\n"


def test_labels_prefix_lines_while_several_regions_are_active(
    mux: OutputMultiplexer,
    output_stream: RecordingStream,
) -> None:
    build = _handle("build")
    anonymous = _handle()
    mux.init_process(build)
    mux.init_process(anonymous)

    mux.write_process_output("out", b"a\nb\n", build)
    mux.write_process_output("out", b"c\n", anonymous)

    assert output_stream.writes == ["[build] a\n[build] b\n", f"[#{anonymous.handle_id}] c\n"]

    mux.finish_process(anonymous)
    mux.write_process_output("out", b"d\n", build)
    assert output_stream.writes[-1] == "d\n"


def test_unknown_handle_raises_lookup_error(mux: OutputMultiplexer) -> None:
    with pytest.raises(LookupError):
        mux.write_process_output("out", b"x\n", _handle())
    with pytest.raises(LookupError):
        mux.tick_process(_handle())


def test_duplicate_region_is_rejected(mux: OutputMultiplexer) -> None:
    handle = _handle()
    mux.init_process(handle)

    with pytest.raises(ValueError):
        mux.init_process(handle)


def test_tick_counts_without_drawing_when_not_animated(
    mux: OutputMultiplexer,
    error_stream: RecordingStream,
) -> None:
    handle = _handle()
    mux.init_process(handle)

    mux.tick_process(handle)
    mux.tick_process(handle)

    assert mux.region(handle).ticks == 2
    assert error_stream.getvalue() == ""


def test_animated_spinner_is_cleared_before_output(
    output_stream: RecordingStream,
    error_stream: RecordingStream,
) -> None:
    mux = OutputMultiplexer(output_stream=output_stream, error_stream=error_stream, animate=True)
    handle = _handle("serve")
    mux.init_process(handle)

    mux.tick_process(handle)
    assert SPINNER_FRAMES[1] in error_stream.getvalue()
    assert "serve" in error_stream.getvalue()

    mux.write_process_output("out", b"ready\n", handle)
    assert error_stream.writes[-1] == "\r\033[K"
    assert output_stream.getvalue() == "ready\n"
