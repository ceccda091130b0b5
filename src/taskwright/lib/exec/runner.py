"""Run one external command end to end: resolve, spawn, stream, wait, judge."""

from __future__ import annotations

import asyncio
import os
import warnings
from collections.abc import Callable, Mapping, Sequence
from dataclasses import replace
from pathlib import Path
from typing import Any

import structlog

from taskwright.lib.config.settings import TaskwrightConfig
from taskwright.lib.context import ContextScope, ExecutionContext
from taskwright.lib.exec.errors import ConfigurationError, FailureDetail, ProcessFailure
from taskwright.lib.exec.events import LifecycleBus, ProcessStartEvent, ProcessTerminateEvent
from taskwright.lib.exec.handle import ExternalProcessHandle, StreamKind
from taskwright.lib.exec.notify import LoggingNotifier, Notifier, completion_message
from taskwright.lib.exec.output import OutputMultiplexer
from taskwright.lib.exec.scheduler import CooperativeScheduler
from taskwright.lib.exec.timeout import ProcessTimeoutError, enforce_deadline, terminate_process

logger = structlog.get_logger(__name__)

OutputCallback = Callable[[StreamKind, bytes, ExternalProcessHandle], None]
Command = str | Sequence[str | os.PathLike[str] | int]

_READ_CHUNK_BYTES = 64 * 1024
_IS_WINDOWS = os.name == "nt"


def _normalize_command(command: Command) -> str | tuple[str, ...]:
    if isinstance(command, str):
        if not command.strip():
            raise ConfigurationError("Cannot run an empty command.")
        return command
    normalized = tuple(
        os.fspath(part) if isinstance(part, os.PathLike) else str(part) for part in command
    )
    if not normalized:
        raise ConfigurationError("Cannot run an empty command.")
    return normalized


async def _pump(
    reader: asyncio.StreamReader,
    stream: StreamKind,
    handle: ExternalProcessHandle,
    callback: OutputCallback | None,
) -> None:
    while True:
        try:
            chunk = await reader.read(_READ_CHUNK_BYTES)
        except OSError:
            # A pty master reports EIO once the child side is closed.
            break
        if not chunk:
            break
        handle.append_output(stream, chunk)
        if callback is not None:
            callback(stream, chunk, handle)


class ProcessOrchestrator:
    """Run external commands for tasks.

    Inside a cooperative task the wait loop ticks the output region and yields
    to sibling tasks between polls; elsewhere it simply awaits the exit.
    """

    def __init__(
        self,
        *,
        contexts: ContextScope,
        output: OutputMultiplexer,
        events: LifecycleBus,
        scheduler: CooperativeScheduler,
        notifier: Notifier | None = None,
        config: TaskwrightConfig | None = None,
    ) -> None:
        self._contexts = contexts
        self._output = output
        self._events = events
        self._scheduler = scheduler
        self._notifier = notifier or LoggingNotifier()
        self._config = config or TaskwrightConfig()

    def resolve_context(
        self,
        *,
        environment: Mapping[str, str] | None = None,
        working_directory: str | os.PathLike[str] | None = None,
        tty: bool | None = None,
        pty: bool | None = None,
        timeout: float | None = None,
        quiet: bool | None = None,
        allow_failure: bool | None = None,
        notify: bool | None = None,
        context: ExecutionContext | None = None,
        path: str | os.PathLike[str] | None = None,
    ) -> ExecutionContext:
        """Apply per-call overrides onto the provided or current context."""

        if working_directory is not None and path is not None:
            raise ConfigurationError(
                'You cannot use both the "path" and "working_directory" arguments '
                "at the same time."
            )
        if tty and pty:
            raise ConfigurationError('The "tty" and "pty" arguments are mutually exclusive.')
        if path is not None:
            warnings.warn(
                'The "path" argument is deprecated, use "working_directory" instead.',
                DeprecationWarning,
                stacklevel=3,
            )
            working_directory = path

        base = context if context is not None else self._contexts.get_current()
        changes: dict[str, Any] = {}
        if environment is not None:
            changes["environment"] = {**base.environment, **environment}
        if working_directory is not None:
            changes["working_directory"] = Path(working_directory)
        if tty is not None:
            changes["tty"] = tty
        if pty is not None:
            changes["pty"] = pty
        if timeout is not None:
            changes["timeout"] = timeout
        if quiet is not None:
            changes["quiet"] = quiet
        if allow_failure is not None:
            changes["allow_failure"] = allow_failure
        if notify is not None:
            changes["notify"] = notify

        if changes.get("quiet", base.quiet):
            # Quiet means captured output, so a terminal attachment is either an
            # explicit conflict or an inherited flag that gets dropped.
            if tty:
                raise ConfigurationError('The "tty" argument cannot be used with "quiet".')
            if pty:
                raise ConfigurationError('The "pty" argument cannot be used with "quiet".')
            changes["tty"] = False
            changes["pty"] = False

        return replace(base, **changes)

    async def run(
        self,
        command: Command,
        *,
        environment: Mapping[str, str] | None = None,
        working_directory: str | os.PathLike[str] | None = None,
        tty: bool | None = None,
        pty: bool | None = None,
        timeout: float | None = None,
        quiet: bool | None = None,
        allow_failure: bool | None = None,
        notify: bool | None = None,
        callback: OutputCallback | None = None,
        context: ExecutionContext | None = None,
        path: str | os.PathLike[str] | None = None,
    ) -> ExternalProcessHandle:
        """Run `command` and return its handle once it has exited.

        A list is executed directly; a string goes through the shell. Raises
        ConfigurationError before spawning on conflicting arguments and
        ProcessFailure on a non-zero exit unless failures are allowed.
        """

        ctx = self.resolve_context(
            environment=environment,
            working_directory=working_directory,
            tty=tty,
            pty=pty,
            timeout=timeout,
            quiet=quiet,
            allow_failure=allow_failure,
            notify=notify,
            context=context,
            path=path,
        )
        handle = ExternalProcessHandle(
            command=_normalize_command(command),
            environment=ctx.resolved_environment(),
            working_directory=ctx.working_directory,
            timeout=ctx.timeout,
            label=ctx.name,
        )
        if not ctx.quiet and callback is None:
            callback = self._output.write_process_output

        self._output.init_process(handle)
        started = False
        try:
            process, readers = await self._spawn(handle, ctx)
            handle.mark_running(process.pid)
            pumps = [
                asyncio.create_task(_pump(reader, stream, handle, callback))
                for stream, reader in readers
            ]
            started = True
            logger.info(
                "Running command.",
                command=handle.command_line,
                task=ctx.name,
                pid=process.pid,
            )
            await self._wait(process, handle, pumps, ctx)
        finally:
            self._output.finish_process(handle)
            if started:
                self._events.publish(ProcessTerminateEvent(handle, handle.exit_code))

        if ctx.notify:
            self._notifier.notify(completion_message(handle.command_line, handle.exit_code))

        if handle.exit_code == 0:
            logger.debug("Command finished successfully.", command=handle.command_line)
            return handle

        logger.warning(
            "Command finished with an error.",
            command=handle.command_line,
            exit_code=handle.exit_code,
            state=str(handle.state),
            task=ctx.name,
        )
        if not ctx.allow_failure:
            detail = (
                FailureDetail.FULL if ctx.verbosity.is_very_verbose() else FailureDetail.TERSE
            )
            raise ProcessFailure(handle, detail=detail)
        return handle

    def run_sync(self, command: Command, **kwargs: Any) -> ExternalProcessHandle:
        """Blocking variant of `run` for callers outside an event loop."""

        return asyncio.run(self.run(command, **kwargs))

    async def capture(self, command: Command, **kwargs: Any) -> str:
        """Run quietly and return stdout without surrounding whitespace."""

        kwargs.setdefault("quiet", True)
        handle = await self.run(command, **kwargs)
        return handle.output.strip()

    async def exit_code(self, command: Command, **kwargs: Any) -> int:
        """Run with failures allowed and return the exit code."""

        kwargs["allow_failure"] = True
        handle = await self.run(command, **kwargs)
        return handle.exit_code if handle.exit_code is not None else 1

    async def _spawn(
        self,
        handle: ExternalProcessHandle,
        ctx: ExecutionContext,
    ) -> tuple[asyncio.subprocess.Process, list[tuple[StreamKind, asyncio.StreamReader]]]:
        cwd = str(ctx.working_directory) if ctx.working_directory is not None else None
        use_tty = ctx.tty and not _IS_WINDOWS
        use_pty = ctx.pty and not _IS_WINDOWS and not use_tty

        pty_master: int | None = None
        if use_tty:
            stdin = stdout = stderr = None
        elif use_pty:
            import pty

            pty_master, pty_slave = pty.openpty()
            stdin = None
            stdout = stderr = pty_slave
        else:
            stdin = asyncio.subprocess.DEVNULL
            stdout = stderr = asyncio.subprocess.PIPE

        try:
            if isinstance(handle.command, str):
                process = await asyncio.create_subprocess_shell(
                    handle.command,
                    cwd=cwd,
                    env=dict(handle.environment),
                    stdin=stdin,
                    stdout=stdout,
                    stderr=stderr,
                )
            else:
                process = await asyncio.create_subprocess_exec(
                    *handle.command,
                    cwd=cwd,
                    env=dict(handle.environment),
                    stdin=stdin,
                    stdout=stdout,
                    stderr=stderr,
                )
        except BaseException:
            if pty_master is not None:
                os.close(pty_master)
                os.close(pty_slave)
            raise

        readers: list[tuple[StreamKind, asyncio.StreamReader]] = []
        if pty_master is not None:
            os.close(pty_slave)
            readers.append(("out", await self._open_pty_reader(pty_master)))
        elif not use_tty:
            if process.stdout is None or process.stderr is None:
                raise RuntimeError("Subprocess did not expose stdout/stderr pipes.")
            readers.append(("out", process.stdout))
            readers.append(("err", process.stderr))
        return process, readers

    async def _open_pty_reader(self, master_fd: int) -> asyncio.StreamReader:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        await loop.connect_read_pipe(lambda: protocol, os.fdopen(master_fd, "rb", 0))
        return reader

    async def _wait(
        self,
        process: asyncio.subprocess.Process,
        handle: ExternalProcessHandle,
        pumps: list[asyncio.Task[None]],
        ctx: ExecutionContext,
    ) -> None:
        grace = self._config.kill_grace_seconds
        deadline: asyncio.Task[None] | None = None
        if ctx.timeout is not None:
            deadline = asyncio.create_task(
                enforce_deadline(process, timeout_seconds=ctx.timeout, kill_grace_seconds=grace)
            )

        timed_out = False
        try:
            self._events.publish(ProcessStartEvent(handle))
            if self._scheduler.in_cooperative_task():
                while process.returncode is None:
                    self._output.tick_process(handle)
                    await self._scheduler.suspend()
            raw_return_code = await process.wait()
            if deadline is not None:
                try:
                    await deadline
                except ProcessTimeoutError:
                    timed_out = True
            await asyncio.gather(*pumps)
        except BaseException:
            if deadline is not None:
                deadline.cancel()
            # Cancelled, or a pump or start listener failed: never leave the child behind.
            await asyncio.shield(terminate_process(process, grace_seconds=grace))
            for pump in pumps:
                pump.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)
            handle.mark_finished(process.returncode if process.returncode is not None else 1)
            raise

        handle.mark_finished(raw_return_code, timed_out=timed_out)
        if timed_out:
            logger.warning(
                "Command timed out.",
                command=handle.command_line,
                timeout=ctx.timeout,
                exit_code=handle.exit_code,
            )
