"""Poll a readiness condition until it holds, fails for good, or times out."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import sys
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import TextIO

import httpx
import structlog

from taskwright.lib.config.settings import TaskwrightConfig
from taskwright.lib.exec.errors import ConfigurationError, ExitedBeforeTimeout, TimeoutReached

logger = structlog.get_logger(__name__)


class Readiness(StrEnum):
    NOT_READY = "not-ready"
    READY = "ready"
    FAILED = "failed"


ProbeResult = Readiness | bool
ReadinessCallback = Callable[[], ProbeResult | Awaitable[ProbeResult]]
ResponsePredicate = Callable[[httpx.Response], ProbeResult]


async def _bounded(pending: Awaitable[ProbeResult], deadline: float) -> object:
    """Await one probe, reporting NOT_READY once the loop-time `deadline` passes."""

    scope = asyncio.timeout_at(deadline)
    try:
        async with scope:
            return await pending
    except TimeoutError:
        if not scope.expired():
            raise
        return Readiness.NOT_READY


def _normalize(result: object) -> Readiness:
    if isinstance(result, Readiness):
        return result
    if isinstance(result, bool):
        return Readiness.READY if result else Readiness.NOT_READY
    raise TypeError(
        f"Readiness callback must return a Readiness or bool, got {type(result).__name__}."
    )


class WaitForEngine:
    """Generic polling primitive plus port and HTTP probes built on it.

    The sleep between polls is an asyncio suspension point, so a wait running
    inside a cooperative task lets sibling tasks progress.
    """

    def __init__(
        self,
        *,
        config: TaskwrightConfig | None = None,
        output_stream: TextIO | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or TaskwrightConfig()
        self._output_stream = output_stream
        self._http_transport = http_transport

    async def wait_for(
        self,
        callback: ReadinessCallback,
        *,
        timeout: float | None = None,
        poll_interval: float | None = None,
        message: str | None = None,
    ) -> None:
        """Poll `callback` until it reports ready.

        Raises ExitedBeforeTimeout as soon as the callback reports FAILED and
        TimeoutReached once `timeout` seconds pass without readiness. Errors
        raised by the callback itself propagate unchanged.
        """

        timeout = self._config.wait_timeout_seconds if timeout is None else timeout
        interval = (
            self._config.wait_poll_interval_seconds if poll_interval is None else poll_interval
        )
        if timeout <= 0:
            raise ConfigurationError(f"wait_for timeout must be > 0, got {timeout!r}.")
        if interval <= 0:
            raise ConfigurationError(f"wait_for poll interval must be > 0, got {interval!r}.")

        self._announce(message)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        attempts = 0
        ok = False
        try:
            while True:
                attempts += 1
                raw = callback()
                if inspect.isawaitable(raw):
                    raw = await _bounded(raw, deadline)
                state = _normalize(raw)

                if state == Readiness.READY:
                    ok = True
                    logger.debug("Condition ready.", message=message, attempts=attempts)
                    return
                if state == Readiness.FAILED:
                    logger.info("Condition failed before timeout.", message=message)
                    raise ExitedBeforeTimeout(timeout=timeout, message=message)

                remaining = deadline - loop.time()
                if remaining <= 0:
                    logger.info(
                        "Condition timed out.",
                        message=message,
                        timeout=timeout,
                        attempts=attempts,
                    )
                    raise TimeoutReached(timeout=timeout, message=message)
                await asyncio.sleep(min(interval, remaining))
        finally:
            self._conclude(message, ok=ok)

    async def wait_for_port(
        self,
        host: str,
        port: int,
        *,
        timeout: float | None = None,
        poll_interval: float | None = None,
        message: str | None = None,
    ) -> None:
        connect_timeout = self._config.connect_timeout_seconds

        async def _probe() -> Readiness:
            try:
                _reader, writer = await asyncio.wait_for(
                    asyncio.open_connection(host, port),
                    timeout=connect_timeout,
                )
            except (OSError, TimeoutError):
                return Readiness.NOT_READY
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()
            return Readiness.READY

        await self.wait_for(
            _probe,
            timeout=timeout,
            poll_interval=poll_interval,
            message=message,
        )

    async def wait_for_url(
        self,
        url: str | None = None,
        *,
        timeout: float | None = None,
        poll_interval: float | None = None,
        message: str | None = None,
    ) -> None:
        """Wait until `url` answers with a 2xx status.

        Without `url`, the configured endpoint (`TASKWRIGHT_ENDPOINT`) is used.
        """

        target = self._resolve_url(url)
        await self.wait_for_http_response(
            target,
            lambda response: response.is_success,
            timeout=timeout,
            poll_interval=poll_interval,
            message=message,
        )

    async def wait_for_http_status(
        self,
        url: str | None,
        status: int,
        *,
        timeout: float | None = None,
        poll_interval: float | None = None,
        message: str | None = None,
    ) -> None:
        await self.wait_for_http_response(
            url,
            lambda response: response.status_code == status,
            timeout=timeout,
            poll_interval=poll_interval,
            message=message,
        )

    async def wait_for_http_response(
        self,
        url: str | None,
        predicate: ResponsePredicate,
        *,
        timeout: float | None = None,
        poll_interval: float | None = None,
        message: str | None = None,
    ) -> None:
        target = self._resolve_url(url)
        request_timeout = httpx.Timeout(
            self._config.connect_timeout_seconds * 5,
            connect=self._config.connect_timeout_seconds,
        )
        async with httpx.AsyncClient(
            timeout=request_timeout,
            transport=self._http_transport,
            follow_redirects=True,
        ) as client:

            async def _probe() -> ProbeResult:
                try:
                    response = await client.get(target)
                except httpx.TransportError as exc:
                    logger.debug("Probe request failed.", url=target, error=str(exc))
                    return Readiness.NOT_READY
                return predicate(response)

            await self.wait_for(
                _probe,
                timeout=timeout,
                poll_interval=poll_interval,
                message=message,
            )

    def _resolve_url(self, url: str | None) -> str:
        if url:
            return url
        if self._config.endpoint:
            return self._config.endpoint
        raise ConfigurationError(
            "No URL given and no default endpoint configured (set TASKWRIGHT_ENDPOINT)."
        )

    def _announce(self, message: str | None) -> None:
        if message is None:
            return
        logger.info("Waiting.", message=message)
        stream = self._output_stream or sys.stderr
        stream.write(f"{message} ")
        stream.flush()

    def _conclude(self, message: str | None, *, ok: bool) -> None:
        if message is None:
            return
        stream = self._output_stream or sys.stderr
        stream.write("OK\n" if ok else "FAIL\n")
        stream.flush()
