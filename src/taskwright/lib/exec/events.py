"""Process lifecycle events and the bus that publishes them."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

from taskwright.lib.exec.handle import ExternalProcessHandle

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ProcessStartEvent:
    handle: ExternalProcessHandle


@dataclass(frozen=True, slots=True)
class ProcessTerminateEvent:
    handle: ExternalProcessHandle
    exit_code: int | None


LifecycleEvent = ProcessStartEvent | ProcessTerminateEvent
EventT = TypeVar("EventT", ProcessStartEvent, ProcessTerminateEvent)


class LifecycleBus:
    """Synchronous publish/subscribe for process start and terminate events.

    Listeners run in subscription order inside `publish`; a listener that
    raises stops delivery and the exception reaches the publisher.
    """

    def __init__(self) -> None:
        self._listeners: dict[type[object], list[Callable[[object], None]]] = defaultdict(list)

    def subscribe(
        self,
        event_type: type[EventT],
        listener: Callable[[EventT], None],
    ) -> Callable[[], None]:
        """Register `listener` and return a callable that removes it again."""

        bucket = self._listeners[event_type]
        bucket.append(listener)  # type: ignore[arg-type]

        def _unsubscribe() -> None:
            if listener in bucket:
                bucket.remove(listener)  # type: ignore[arg-type]

        return _unsubscribe

    def publish(self, event: LifecycleEvent) -> None:
        for listener in tuple(self._listeners.get(type(event), ())):
            try:
                listener(event)
            except Exception:
                logger.error(
                    "Lifecycle listener failed.",
                    event=type(event).__name__,
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    command=event.handle.command_line,
                )
                raise
