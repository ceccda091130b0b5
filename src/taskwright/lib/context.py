"""Immutable execution contexts and the per-task scope that resolves them."""

from __future__ import annotations

import os
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from enum import IntEnum
from pathlib import Path
from types import MappingProxyType

from taskwright.lib.exec.errors import ConfigurationError, ContextNotInitializedError


class Verbosity(IntEnum):
    QUIET = 0
    NORMAL = 1
    VERBOSE = 2
    VERY_VERBOSE = 3
    DEBUG = 4

    @classmethod
    def from_name(cls, value: str) -> Verbosity:
        normalized = value.strip().lower().replace("-", "_")
        try:
            return cls[normalized.upper()]
        except KeyError as exc:
            raise ConfigurationError(f"Unknown verbosity level {value!r}.") from exc

    def is_very_verbose(self) -> bool:
        return self >= Verbosity.VERY_VERBOSE


@dataclass(frozen=True, slots=True)
class ExecutionContext:
    """Spawn parameters for external commands.

    Every `with_*` method returns a new context; the receiver is never
    modified. The environment is an overlay applied on top of the parent
    process environment at spawn time.
    """

    environment: Mapping[str, str] = field(default_factory=dict)
    working_directory: Path | None = None
    tty: bool = False
    pty: bool = False
    timeout: float | None = None
    quiet: bool = False
    allow_failure: bool = False
    notify: bool = False
    verbosity: Verbosity = Verbosity.NORMAL
    name: str = "default"

    def __post_init__(self) -> None:
        if not isinstance(self.environment, MappingProxyType):
            object.__setattr__(
                self, "environment", MappingProxyType(dict(self.environment))
            )
        if self.tty and self.pty:
            raise ConfigurationError('The "tty" and "pty" options are mutually exclusive.')
        if self.quiet and (self.tty or self.pty):
            raise ConfigurationError('The "tty" and "pty" options cannot be used with "quiet".')
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError(f"Timeout must be > 0 when provided, got {self.timeout!r}.")

    def with_environment(self, overlay: Mapping[str, str]) -> ExecutionContext:
        return replace(self, environment={**self.environment, **overlay})

    def with_working_directory(
        self,
        working_directory: str | os.PathLike[str],
    ) -> ExecutionContext:
        return replace(self, working_directory=Path(working_directory))

    def with_tty(self, tty: bool = True) -> ExecutionContext:
        return replace(self, tty=tty)

    def with_pty(self, pty: bool = True) -> ExecutionContext:
        return replace(self, pty=pty)

    def with_timeout(self, timeout: float | None) -> ExecutionContext:
        return replace(self, timeout=timeout)

    def with_quiet(self, quiet: bool = True) -> ExecutionContext:
        return replace(self, quiet=quiet)

    def with_allow_failure(self, allow_failure: bool = True) -> ExecutionContext:
        return replace(self, allow_failure=allow_failure)

    def with_notify(self, notify: bool = True) -> ExecutionContext:
        return replace(self, notify=notify)

    def with_verbosity(self, verbosity: Verbosity) -> ExecutionContext:
        return replace(self, verbosity=verbosity)

    def with_name(self, name: str) -> ExecutionContext:
        return replace(self, name=name)

    def resolved_environment(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        resolved = dict(os.environ if base is None else base)
        resolved.update(self.environment)
        return resolved


class ContextScope:
    """Resolve the current ExecutionContext for whichever task is running.

    The stack is held in a ContextVar: each asyncio task works on its own copy,
    so a context pushed by one task is invisible to its siblings.
    """

    def __init__(self, default: ExecutionContext | None = None) -> None:
        self._default = default
        self._stack: ContextVar[tuple[ExecutionContext, ...]] = ContextVar(
            f"taskwright_context_stack_{id(self)}",
            default=(),
        )

    @property
    def default(self) -> ExecutionContext | None:
        return self._default

    def establish_default(self, context: ExecutionContext) -> None:
        self._default = context

    def has_current(self) -> bool:
        return bool(self._stack.get()) or self._default is not None

    def get_current(self) -> ExecutionContext:
        stack = self._stack.get()
        if stack:
            return stack[-1]
        if self._default is None:
            raise ContextNotInitializedError()
        return self._default

    @contextmanager
    def push(self, context: ExecutionContext) -> Iterator[ExecutionContext]:
        token = self._stack.set((*self._stack.get(), context))
        try:
            yield context
        finally:
            self._stack.reset(token)
