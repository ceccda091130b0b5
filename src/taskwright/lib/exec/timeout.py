"""Deadline enforcement and graceful termination for child processes."""

from __future__ import annotations

import asyncio

import structlog

from taskwright.lib.config.settings import TaskwrightConfig

logger = structlog.get_logger(__name__)

DEFAULT_KILL_GRACE_SECONDS = TaskwrightConfig().kill_grace_seconds


class ProcessTimeoutError(TimeoutError):
    """The child outlived the timeout of its execution context."""

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Process exceeded timeout after {timeout_seconds:.3f}s")


async def terminate_process(
    process: asyncio.subprocess.Process,
    *,
    grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
) -> None:
    """Send SIGTERM, then SIGKILL once `grace_seconds` pass without an exit."""

    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return

    try:
        await asyncio.wait_for(process.wait(), timeout=grace_seconds)
        return
    except TimeoutError:
        pass

    if process.returncode is None:
        logger.warning(
            "Process ignored termination request, killing it.",
            pid=process.pid,
            grace_seconds=grace_seconds,
        )
        process.kill()
        await process.wait()


async def enforce_deadline(
    process: asyncio.subprocess.Process,
    *,
    timeout_seconds: float,
    kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
) -> None:
    """Watch `process` and stop it when `timeout_seconds` elapse.

    Meant to run as a task beside the orchestrator's wait loop. Returns
    normally when the child exits in time, otherwise terminates it and raises
    ProcessTimeoutError.
    """

    if timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be > 0 when provided.")

    try:
        await asyncio.wait_for(process.wait(), timeout=timeout_seconds)
    except TimeoutError as exc:
        logger.info("Process deadline reached.", pid=process.pid, timeout=timeout_seconds)
        await terminate_process(process, grace_seconds=kill_grace_seconds)
        raise ProcessTimeoutError(timeout_seconds) from exc
