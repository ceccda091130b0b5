"""Signal routing: newest-first dispatch, unbinding and trap restoration."""

from __future__ import annotations

import os
import signal
from collections.abc import Iterator

import pytest

from taskwright.lib.exec.errors import SignalHandlerError
from taskwright.lib.exec.signals import SignalRouter

pytestmark = pytest.mark.skipif(not hasattr(signal, "SIGUSR1"), reason="requires SIGUSR1")


@pytest.fixture
def router() -> Iterator[SignalRouter]:
    previous = signal.getsignal(signal.SIGUSR1)
    instance = SignalRouter()
    yield instance
    signal.signal(signal.SIGUSR1, previous)


def test_delivered_signal_reaches_every_handler_newest_first(router: SignalRouter) -> None:
    calls: list[str] = []
    router.bind(signal.SIGUSR1, lambda signum: calls.append("older"), "task-a")
    router.bind(signal.SIGUSR1, lambda signum: calls.append("newer"), "task-b")

    os.kill(os.getpid(), signal.SIGUSR1)

    assert calls == ["newer", "older"]


def test_rebinding_a_scope_replaces_its_handler(router: SignalRouter) -> None:
    calls: list[str] = []
    router.bind(signal.SIGUSR1, lambda signum: calls.append("first"), "task-a")
    router.bind(signal.SIGUSR1, lambda signum: calls.append("other"), "task-b")
    router.bind(signal.SIGUSR1, lambda signum: calls.append("replaced"), "task-a")

    router.dispatch(signal.SIGUSR1)

    assert calls == ["replaced", "other"]
    assert len(router.handlers_for(signal.SIGUSR1)) == 2


def test_handler_returning_false_is_unbound(router: SignalRouter) -> None:
    calls: list[str] = []

    def _once(signum: int) -> bool:
        calls.append("once")
        return False

    router.bind(signal.SIGUSR1, _once, "task-a")
    router.bind(signal.SIGUSR1, lambda signum: calls.append("always"), "task-b")

    router.dispatch(signal.SIGUSR1)
    router.dispatch(signal.SIGUSR1)

    assert calls == ["always", "once", "always"]


def test_raising_handler_is_wrapped(router: SignalRouter) -> None:
    def _broken(signum: int) -> None:
        raise RuntimeError(f"cannot handle {signum}")

    router.bind(signal.SIGUSR1, _broken, "task-a")

    with pytest.raises(SignalHandlerError) as exc_info:
        router.dispatch(signal.SIGUSR1)

    assert exc_info.value.signum == signal.SIGUSR1
    assert isinstance(exc_info.value.__cause__, RuntimeError)


def test_trap_is_installed_once_and_restored(router: SignalRouter) -> None:
    def _previous(signum: int, frame: object) -> None:
        _ = (signum, frame)

    signal.signal(signal.SIGUSR1, _previous)

    router.bind(signal.SIGUSR1, lambda signum: None, "task-a")
    router.bind(signal.SIGUSR1, lambda signum: None, "task-b")
    assert signal.getsignal(signal.SIGUSR1) != _previous
    assert router.active_signals() == (int(signal.SIGUSR1),)

    router.unbind(signal.SIGUSR1, "task-a")
    assert signal.getsignal(signal.SIGUSR1) != _previous

    router.unbind_all("task-b")
    assert signal.getsignal(signal.SIGUSR1) is _previous
    assert router.active_signals() == ()


def test_unbinding_unknown_scope_is_a_no_op(router: SignalRouter) -> None:
    router.unbind(signal.SIGUSR1, "missing")
    router.unbind_all("missing")

    assert router.active_signals() == ()


def test_each_raise_invokes_handler_once_until_it_declines(router: SignalRouter) -> None:
    calls: list[int] = []

    def _count(signum: int) -> bool:
        calls.append(signum)
        return len(calls) < 2

    router.bind(signal.SIGUSR1, _count, "task-a")

    os.kill(os.getpid(), signal.SIGUSR1)
    assert calls == [signal.SIGUSR1]

    os.kill(os.getpid(), signal.SIGUSR1)
    assert calls == [signal.SIGUSR1, signal.SIGUSR1]
    assert router.active_signals() == ()

    router.bind(signal.SIGUSR1, lambda signum: None, "task-b")
    os.kill(os.getpid(), signal.SIGUSR1)
    assert len(calls) == 2
