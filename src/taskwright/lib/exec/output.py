"""Live output regions for concurrently running external processes."""

from __future__ import annotations

import codecs
import sys
from dataclasses import dataclass, field
from typing import TextIO

from taskwright.lib.exec.handle import ExternalProcessHandle, StreamKind

SPINNER_FRAMES: tuple[str, ...] = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")
_CLEAR_LINE = "\r\033[K"


def _new_decoder() -> codecs.IncrementalDecoder:
    return codecs.getincrementaldecoder("utf-8")(errors="replace")


@dataclass(slots=True)
class OutputRegion:
    """Per-process slot: raw bytes per stream plus pending partial lines."""

    handle: ExternalProcessHandle
    label: str
    stdout: bytearray = field(default_factory=bytearray)
    stderr: bytearray = field(default_factory=bytearray)
    ticks: int = 0
    _decoders: dict[str, codecs.IncrementalDecoder] = field(default_factory=dict, init=False)
    _pending: dict[str, str] = field(default_factory=dict, init=False)

    def feed(self, stream: StreamKind, data: bytes) -> list[str]:
        """Buffer `data` and return the complete lines it finished."""

        (self.stdout if stream == "out" else self.stderr).extend(data)
        decoder = self._decoders.setdefault(stream, _new_decoder())
        text = self._pending.get(stream, "") + decoder.decode(data)
        *complete, rest = text.split("\n")
        self._pending[stream] = rest
        return complete

    def drain(self, stream: StreamKind) -> str:
        decoder = self._decoders.get(stream)
        tail = decoder.decode(b"", final=True) if decoder is not None else ""
        return self._pending.pop(stream, "") + tail


class OutputMultiplexer:
    """Render incremental output of every running process.

    Output is line-buffered per region and stream so lines from two processes
    never interleave mid-line. When more than one region is active each line
    is prefixed with its region label. No method awaits, so each call is
    atomic with respect to task switches.
    """

    def __init__(
        self,
        *,
        output_stream: TextIO | None = None,
        error_stream: TextIO | None = None,
        animate: bool | None = None,
    ) -> None:
        self._output_stream = output_stream or sys.stdout
        self._error_stream = error_stream or sys.stderr
        if animate is None:
            isatty = getattr(self._error_stream, "isatty", None)
            animate = bool(isatty()) if callable(isatty) else False
        self._animate = animate
        self._regions: dict[int, OutputRegion] = {}
        self._spinner_visible = False

    @property
    def active_count(self) -> int:
        return len(self._regions)

    def region(self, handle: ExternalProcessHandle) -> OutputRegion:
        try:
            return self._regions[handle.handle_id]
        except KeyError:
            raise LookupError(
                f"No output region for process #{handle.handle_id} ({handle.command_line})."
            ) from None

    def init_process(self, handle: ExternalProcessHandle) -> OutputRegion:
        if handle.handle_id in self._regions:
            raise ValueError(f"Process #{handle.handle_id} already has an output region.")
        label = handle.label if handle.label != "default" else f"#{handle.handle_id}"
        region = OutputRegion(handle=handle, label=label)
        self._regions[handle.handle_id] = region
        return region

    def write_process_output(
        self,
        stream: StreamKind,
        data: bytes,
        handle: ExternalProcessHandle,
    ) -> None:
        region = self.region(handle)
        lines = region.feed(stream, data)
        if lines:
            self._emit(region, stream, lines)

    def tick_process(self, handle: ExternalProcessHandle) -> None:
        region = self.region(handle)
        region.ticks += 1
        if not self._animate:
            return
        frame = SPINNER_FRAMES[region.ticks % len(SPINNER_FRAMES)]
        running = ", ".join(item.label for item in self._regions.values())
        self._error_stream.write(f"{_CLEAR_LINE}{frame} {running}")
        self._error_stream.flush()
        self._spinner_visible = True

    def finish_process(self, handle: ExternalProcessHandle) -> OutputRegion:
        region = self.region(handle)
        for stream in ("out", "err"):
            tail = region.drain(stream)
            if tail:
                self._emit(region, stream, [tail])
        del self._regions[handle.handle_id]
        if not self._regions:
            self._clear_spinner()
        return region

    def _emit(self, region: OutputRegion, stream: StreamKind, lines: list[str]) -> None:
        self._clear_spinner()
        prefix = f"[{region.label}] " if len(self._regions) > 1 else ""
        target = self._output_stream if stream == "out" else self._error_stream
        target.write("".join(f"{prefix}{line}\n" for line in lines))
        target.flush()

    def _clear_spinner(self) -> None:
        if not self._spinner_visible:
            return
        self._error_stream.write(_CLEAR_LINE)
        self._error_stream.flush()
        self._spinner_visible = False
