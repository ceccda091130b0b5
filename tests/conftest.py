"""Shared pytest fixtures for the execution core."""

from __future__ import annotations

import io
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from taskwright.lib.config.settings import TaskwrightConfig
from taskwright.lib.runtime import Runtime, build_runtime

if TYPE_CHECKING:
    from collections.abc import Callable

PACKAGE_ROOT = Path(__file__).resolve().parents[1]


class RecordingNotifier:
    def __init__(self) -> None:
        self.messages: list[str] = []

    def notify(self, message: str) -> None:
        self.messages.append(message)


class RecordingStream(io.StringIO):
    """StringIO that remembers every individual write call."""

    def __init__(self) -> None:
        super().__init__()
        self.writes: list[str] = []

    def write(self, text: str) -> int:
        self.writes.append(text)
        return super().write(text)


@pytest.fixture
def package_root() -> Path:
    return PACKAGE_ROOT


@pytest.fixture
def mock_process(package_root: Path) -> Callable[..., list[str]]:
    script = package_root / "tests" / "mock_process.py"

    def _command(*args: str) -> list[str]:
        return [sys.executable, str(script), *args]

    return _command


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def output_stream() -> RecordingStream:
    return RecordingStream()


@pytest.fixture
def error_stream() -> RecordingStream:
    return RecordingStream()


@pytest.fixture
def runtime(
    output_stream: RecordingStream,
    error_stream: RecordingStream,
    notifier: RecordingNotifier,
) -> Runtime:
    config = TaskwrightConfig(tick_interval_seconds=0.01, kill_grace_seconds=0.5)
    return build_runtime(
        config,
        output_stream=output_stream,
        error_stream=error_stream,
        notifier=notifier,
    )
