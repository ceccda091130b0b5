"""Per-run composition root for the execution core."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

import httpx

from taskwright.lib.config._paths import resolve_repo_root
from taskwright.lib.config.settings import TaskwrightConfig, load_config
from taskwright.lib.context import ContextScope, ExecutionContext, Verbosity
from taskwright.lib.exec.events import LifecycleBus
from taskwright.lib.exec.notify import LoggingNotifier, Notifier
from taskwright.lib.exec.output import OutputMultiplexer
from taskwright.lib.exec.runner import ProcessOrchestrator
from taskwright.lib.exec.scheduler import CooperativeScheduler
from taskwright.lib.exec.signals import SignalRouter
from taskwright.lib.exec.wait_for import WaitForEngine


@dataclass(frozen=True, slots=True)
class Runtime:
    """Explicitly constructed collaborators shared by every task of one run."""

    config: TaskwrightConfig
    contexts: ContextScope
    output: OutputMultiplexer
    events: LifecycleBus
    signals: SignalRouter
    notifier: Notifier
    scheduler: CooperativeScheduler
    processes: ProcessOrchestrator
    waits: WaitForEngine

    @property
    def default_context(self) -> ExecutionContext:
        return self.contexts.get_current()


def default_context_from_config(config: TaskwrightConfig) -> ExecutionContext:
    return ExecutionContext(verbosity=Verbosity.from_name(config.verbosity))


def build_runtime(
    config: TaskwrightConfig | None = None,
    *,
    default_context: ExecutionContext | None = None,
    output_stream: TextIO | None = None,
    error_stream: TextIO | None = None,
    notifier: Notifier | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> Runtime:
    """Wire one runtime; nothing here is a module-level singleton."""

    resolved_config = config or TaskwrightConfig()
    contexts = ContextScope(default_context or default_context_from_config(resolved_config))
    output = OutputMultiplexer(output_stream=output_stream, error_stream=error_stream)
    events = LifecycleBus()
    signals = SignalRouter()
    resolved_notifier = notifier or LoggingNotifier()
    scheduler = CooperativeScheduler(
        contexts=contexts,
        signals=signals,
        tick_interval=resolved_config.tick_interval_seconds,
    )
    processes = ProcessOrchestrator(
        contexts=contexts,
        output=output,
        events=events,
        scheduler=scheduler,
        notifier=resolved_notifier,
        config=resolved_config,
    )
    waits = WaitForEngine(
        config=resolved_config,
        output_stream=error_stream,
        http_transport=http_transport,
    )
    return Runtime(
        config=resolved_config,
        contexts=contexts,
        output=output,
        events=events,
        signals=signals,
        notifier=resolved_notifier,
        scheduler=scheduler,
        processes=processes,
        waits=waits,
    )


def build_runtime_for_repo(repo_root: str | None = None, **kwargs: object) -> Runtime:
    """Resolve the repository root, load its config and wire a runtime."""

    explicit_root = Path(repo_root).expanduser().resolve() if repo_root else None
    config = load_config(resolve_repo_root(explicit_root))
    return build_runtime(config, **kwargs)  # type: ignore[arg-type]
