"""Cooperative task runtime: many tasks, one event loop, explicit suspension."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, TypeVar

import structlog

from taskwright.lib.context import ContextScope, ExecutionContext
from taskwright.lib.exec.signals import SignalHandler, SignalRouter

logger = structlog.get_logger(__name__)

T = TypeVar("T")
TaskFunction = Callable[..., Awaitable[Any]]


@dataclass(eq=False, slots=True)
class TaskScope:
    """Identity of one running cooperative task.

    Signal bindings are owned by a scope and dropped when its task ends.
    """

    name: str
    context: ExecutionContext


@dataclass(frozen=True, slots=True)
class TaskSpec:
    fn: TaskFunction
    args: tuple[Any, ...] = ()
    name: str | None = None
    context: ExecutionContext | None = None
    signals: Mapping[int, SignalHandler] = field(default_factory=dict)


class CooperativeScheduler:
    """Run tasks as asyncio tasks that yield only at documented points.

    Suspension points are `suspend()` (used by the process wait loop), the
    wait-for poll sleep, and pipe reads. Every task gets its own context stack
    seeded from the caller's current context.
    """

    def __init__(
        self,
        *,
        contexts: ContextScope,
        signals: SignalRouter,
        tick_interval: float = 0.02,
    ) -> None:
        self._contexts = contexts
        self._signals = signals
        self._tick_interval = tick_interval
        self._scope: ContextVar[TaskScope | None] = ContextVar(
            f"taskwright_task_scope_{id(self)}",
            default=None,
        )

    @property
    def tick_interval(self) -> float:
        return self._tick_interval

    def current_scope(self) -> TaskScope | None:
        return self._scope.get()

    def in_cooperative_task(self) -> bool:
        return self._scope.get() is not None

    async def suspend(self) -> None:
        await asyncio.sleep(self._tick_interval)

    def _new_scope(self, *, name: str | None, context: ExecutionContext | None) -> TaskScope:
        base = context if context is not None else self._contexts.get_current()
        if name is not None:
            base = base.with_name(name)
        return TaskScope(name=base.name, context=base)

    async def _enter(
        self,
        scope: TaskScope,
        fn: TaskFunction,
        args: tuple[Any, ...],
        signals: Mapping[int, SignalHandler],
    ) -> Any:
        token = self._scope.set(scope)
        try:
            with self._contexts.push(scope.context):
                for signum, handler in signals.items():
                    self._signals.bind(signum, handler, scope)
                logger.debug("Task started.", task=scope.name)
                return await fn(*args)
        finally:
            self._signals.unbind_all(scope)
            self._scope.reset(token)
            logger.debug("Task finished.", task=scope.name)

    def _create_task(self, spec: TaskSpec) -> asyncio.Task[Any]:
        scope = self._new_scope(name=spec.name, context=spec.context)
        return asyncio.create_task(
            self._enter(scope, spec.fn, spec.args, spec.signals),
            name=f"taskwright:{scope.name}",
        )

    async def run_task(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        name: str | None = None,
        context: ExecutionContext | None = None,
        signals: Mapping[int, SignalHandler] | None = None,
    ) -> T:
        """Run one cooperative task to completion and return its result."""

        spec = TaskSpec(fn=fn, args=args, name=name, context=context, signals=signals or {})
        return await self._create_task(spec)

    async def gather(self, *specs: TaskSpec) -> list[Any]:
        """Run tasks concurrently; results keep the order of `specs`.

        The first failure cancels the remaining tasks and is re-raised.
        """

        tasks = [self._create_task(spec) for spec in specs]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    def run(self, *specs: TaskSpec) -> list[Any]:
        """Blocking entry point for callers outside an event loop."""

        return asyncio.run(self.gather(*specs))
