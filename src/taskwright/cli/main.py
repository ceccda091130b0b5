"""Cyclopts CLI entry point for taskwright."""

from __future__ import annotations

import asyncio
import sys
from contextvars import ContextVar
from dataclasses import dataclass
from typing import TYPE_CHECKING, Annotated

from cyclopts import App, Parameter

from taskwright import __version__
from taskwright.lib.context import Verbosity
from taskwright.lib.exec.errors import ConfigurationError, ProcessFailure, WaitForError
from taskwright.lib.logging import configure_logging
from taskwright.lib.runtime import Runtime, build_runtime_for_repo

if TYPE_CHECKING:
    from collections.abc import Sequence


EXIT_WAIT_FAILED = 1
EXIT_CONFIGURATION_ERROR = 2


@dataclass(frozen=True, slots=True)
class GlobalOptions:
    """Top-level options that apply to all commands."""

    # None when no -v/-q flag was given; the configured verbosity applies.
    verbosity: Verbosity | None = None
    json_logs: bool = False
    repo_root: str | None = None


def _extract_global_options(argv: Sequence[str]) -> tuple[list[str], GlobalOptions]:
    verbose_count = 0
    quiet = False
    json_logs = False
    repo_root: str | None = None
    cleaned: list[str] = []

    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg == "--":
            cleaned.extend(argv[i:])
            break
        if arg in {"-v", "--verbose"}:
            verbose_count += 1
        elif arg.startswith("-v") and set(arg[1:]) == {"v"}:
            verbose_count += len(arg) - 1
        elif arg in {"-q", "--quiet-logs"}:
            quiet = True
        elif arg == "--json-logs":
            json_logs = True
        elif arg == "--repo-root":
            if i + 1 >= len(argv):
                raise SystemExit("--repo-root requires a value")
            repo_root = argv[i + 1]
            i += 1
        elif arg.startswith("--repo-root="):
            repo_root = arg.partition("=")[2]
        else:
            cleaned.append(arg)
        i += 1

    verbosity: Verbosity | None = None
    if quiet:
        verbosity = Verbosity.QUIET
    elif verbose_count:
        verbosity = Verbosity(min(Verbosity.NORMAL + verbose_count, Verbosity.DEBUG))
    return cleaned, GlobalOptions(verbosity=verbosity, json_logs=json_logs, repo_root=repo_root)


def _parse_env_pairs(pairs: Sequence[str]) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ConfigurationError(f"Invalid --env value {pair!r}: expected KEY=VALUE.")
        parsed[key.strip()] = value
    return parsed


_GLOBAL_OPTIONS: ContextVar[GlobalOptions | None] = ContextVar("_GLOBAL_OPTIONS", default=None)


def get_global_options() -> GlobalOptions:
    return _GLOBAL_OPTIONS.get() or GlobalOptions()


def _runtime() -> Runtime:
    options = get_global_options()
    runtime = build_runtime_for_repo(options.repo_root)
    if options.verbosity is None:
        # Logging was set up before the config was read.
        configure_logging(
            json_mode=options.json_logs,
            verbosity=runtime.default_context.verbosity,
        )
    else:
        runtime.contexts.establish_default(
            runtime.default_context.with_verbosity(options.verbosity)
        )
    return runtime


app = App(
    name="taskwright",
    help="Run commands and wait for services",
    version=__version__,
    help_formatter="plain",
)


@app.command(name="run")
def run_command(
    *command: str,
    cwd: Annotated[
        str | None,
        Parameter(name=["--cwd", "-C"], help="Working directory for the command."),
    ] = None,
    env: Annotated[
        tuple[str, ...],
        Parameter(
            name=["--env", "-e"],
            help="KEY=VALUE overlay (repeatable).",
            negative_iterable=(),
        ),
    ] = (),
    timeout: Annotated[
        float | None,
        Parameter(name="--timeout", help="Kill the command after this many seconds."),
    ] = None,
    quiet: Annotated[
        bool,
        Parameter(name="--quiet", help="Capture output instead of streaming it."),
    ] = False,
    tty: Annotated[
        bool,
        Parameter(name="--tty", help="Attach the command to this terminal."),
    ] = False,
    allow_failure: Annotated[
        bool,
        Parameter(name="--allow-failure", help="Report a non-zero exit without failing."),
    ] = False,
    notify: Annotated[
        bool,
        Parameter(name="--notify", help="Send a notification when the command ends."),
    ] = False,
) -> None:
    """Run one command; a single argument is interpreted by the shell."""

    runtime = _runtime()
    target: str | tuple[str, ...] = command[0] if len(command) == 1 else command
    handle = runtime.processes.run_sync(
        target,
        environment=_parse_env_pairs(env) if env else None,
        working_directory=cwd,
        tty=tty or None,
        timeout=timeout,
        quiet=quiet or None,
        allow_failure=allow_failure or None,
        notify=notify or None,
    )
    if quiet:
        sys.stdout.write(handle.output)
    raise SystemExit(handle.exit_code or 0)


@app.command(name="wait-port")
def wait_port_command(
    port: int,
    host: Annotated[str, Parameter(name="--host", help="Host to connect to.")] = "127.0.0.1",
    timeout: Annotated[
        float | None,
        Parameter(name="--timeout", help="Give up after this many seconds."),
    ] = None,
    message: Annotated[
        str | None,
        Parameter(name="--message", help="Progress message to display."),
    ] = None,
) -> None:
    """Wait until a TCP port accepts connections."""

    runtime = _runtime()
    asyncio.run(runtime.waits.wait_for_port(host, port, timeout=timeout, message=message))


@app.command(name="wait-url")
def wait_url_command(
    url: str | None = None,
    status: Annotated[
        int | None,
        Parameter(name="--status", help="Require this exact status code."),
    ] = None,
    timeout: Annotated[
        float | None,
        Parameter(name="--timeout", help="Give up after this many seconds."),
    ] = None,
    message: Annotated[
        str | None,
        Parameter(name="--message", help="Progress message to display."),
    ] = None,
) -> None:
    """Wait until a URL answers (defaults to TASKWRIGHT_ENDPOINT)."""

    runtime = _runtime()
    if status is None:
        waiter = runtime.waits.wait_for_url(url, timeout=timeout, message=message)
    else:
        waiter = runtime.waits.wait_for_http_status(
            url, status, timeout=timeout, message=message
        )
    asyncio.run(waiter)


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point used by `taskwright` and `python -m taskwright`."""

    args = list(sys.argv[1:] if argv is None else argv)
    cleaned_args, options = _extract_global_options(args)
    configure_logging(
        json_mode=options.json_logs,
        verbosity=options.verbosity if options.verbosity is not None else Verbosity.NORMAL,
    )
    token = _GLOBAL_OPTIONS.set(options)
    try:
        app(cleaned_args)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(EXIT_CONFIGURATION_ERROR) from None
    except ProcessFailure as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(exc.exit_code or 1) from None
    except WaitForError as exc:
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(EXIT_WAIT_FAILED) from None
    finally:
        _GLOBAL_OPTIONS.reset(token)
