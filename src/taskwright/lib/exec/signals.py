"""Route OS signals to handlers bound by running tasks."""

from __future__ import annotations

import signal
from collections.abc import Callable, Hashable
from threading import RLock
from types import FrameType
from typing import cast

import structlog

from taskwright.lib.exec.errors import SignalHandlerError

logger = structlog.get_logger(__name__)

SignalHandler = Callable[[int], bool | None]


def _handler_name(handler: SignalHandler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


class SignalRouter:
    """Signal demultiplexer shared by every task of one run.

    Each (signal, scope) pair holds at most one handler; binding again replaces
    it and makes it the most recent. The OS-level trap for a signal is
    installed with its first binding and the previous disposition is restored
    once no binding remains.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        # Insertion order is registration order.
        self._bindings: dict[int, dict[Hashable, SignalHandler]] = {}
        self._previous_handlers: dict[int, signal.Handlers | Callable[..., object] | None] = {}

    def active_signals(self) -> tuple[int, ...]:
        with self._lock:
            return tuple(self._bindings)

    def handlers_for(self, signum: int) -> tuple[SignalHandler, ...]:
        """Bound handlers for `signum`, most recently registered first."""

        with self._lock:
            return tuple(reversed(tuple(self._bindings.get(int(signum), {}).values())))

    def bind(self, signum: int, handler: SignalHandler, scope: Hashable) -> None:
        signum = int(signum)
        with self._lock:
            bucket = self._bindings.get(signum)
            if bucket is None:
                self._install_locked(signum)
                bucket = self._bindings[signum] = {}
            bucket.pop(scope, None)
            bucket[scope] = handler
        logger.debug("Signal handler bound.", signal=signum, handler=_handler_name(handler))

    def unbind(self, signum: int, scope: Hashable) -> None:
        signum = int(signum)
        with self._lock:
            bucket = self._bindings.get(signum)
            if bucket is None:
                return
            bucket.pop(scope, None)
            if not bucket:
                self._uninstall_locked(signum)

    def unbind_all(self, scope: Hashable) -> None:
        with self._lock:
            for signum in tuple(self._bindings):
                self.unbind(signum, scope)

    def dispatch(self, signum: int) -> None:
        """Invoke every handler bound to `signum`, newest first.

        A handler returning False is unbound. A handler that raises stops the
        dispatch and the failure propagates as SignalHandlerError.
        """

        signum = int(signum)
        with self._lock:
            bindings = tuple(reversed(tuple(self._bindings.get(signum, {}).items())))

        for scope, handler in bindings:
            try:
                keep = handler(signum)
            except Exception as exc:
                raise SignalHandlerError(signum, _handler_name(handler)) from exc
            if keep is False:
                with self._lock:
                    bucket = self._bindings.get(signum)
                    if bucket is not None and bucket.get(scope) is handler:
                        self.unbind(signum, scope)

    def _on_signal(self, raw_signum: int, frame: FrameType | None) -> None:
        _ = frame
        self.dispatch(raw_signum)

    def _install_locked(self, signum: int) -> None:
        previous = signal.getsignal(signum)
        # Raises ValueError outside the main thread.
        signal.signal(signum, self._on_signal)
        self._previous_handlers[signum] = cast("signal.Handlers", previous)

    def _uninstall_locked(self, signum: int) -> None:
        del self._bindings[signum]
        previous = self._previous_handlers.pop(signum, None)
        signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
