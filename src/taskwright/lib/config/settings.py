"""Repository-level operational config loader."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import cast

logger = logging.getLogger(__name__)

CONFIG_DIRNAME = ".taskwright"
CONFIG_FILENAME = "config.toml"


@dataclass(frozen=True, slots=True)
class TaskwrightConfig:
    """Resolved operational configuration for taskwright."""

    tick_interval_seconds: float = 0.02
    kill_grace_seconds: float = 2.0
    wait_timeout_seconds: float = 10.0
    wait_poll_interval_seconds: float = 0.1
    connect_timeout_seconds: float = 1.0
    endpoint: str | None = None
    verbosity: str = "normal"


_SECTION_KEY_MAP: dict[str, dict[str, str]] = {
    "process": {
        "tick_interval_seconds": "tick_interval_seconds",
        "kill_grace_seconds": "kill_grace_seconds",
    },
    "wait": {
        "timeout_seconds": "wait_timeout_seconds",
        "poll_interval_seconds": "wait_poll_interval_seconds",
        "connect_timeout_seconds": "connect_timeout_seconds",
        "endpoint": "endpoint",
    },
    "output": {
        "verbosity": "verbosity",
    },
}

_ENV_OVERRIDE_MAP: dict[str, str] = {
    "TASKWRIGHT_TICK_INTERVAL_SECONDS": "tick_interval_seconds",
    "TASKWRIGHT_KILL_GRACE_SECONDS": "kill_grace_seconds",
    "TASKWRIGHT_WAIT_TIMEOUT_SECONDS": "wait_timeout_seconds",
    "TASKWRIGHT_WAIT_POLL_INTERVAL_SECONDS": "wait_poll_interval_seconds",
    "TASKWRIGHT_CONNECT_TIMEOUT_SECONDS": "connect_timeout_seconds",
    "TASKWRIGHT_ENDPOINT": "endpoint",
    "TASKWRIGHT_VERBOSITY": "verbosity",
}

VERBOSITY_PRESETS = frozenset({"quiet", "normal", "verbose", "very-verbose", "debug"})
_FLOAT_FIELDS = frozenset(
    {
        "tick_interval_seconds",
        "kill_grace_seconds",
        "wait_timeout_seconds",
        "wait_poll_interval_seconds",
        "connect_timeout_seconds",
    }
)


def config_path(repo_root: Path) -> Path:
    return repo_root / CONFIG_DIRNAME / CONFIG_FILENAME


def _check_float(*, value: float, source: str) -> float:
    if value <= 0:
        raise ValueError(
            f"Invalid value for '{source}': expected a positive number, got {value!r}."
        )
    return value


def _check_verbosity(*, value: str, source: str) -> str:
    normalized = value.strip().lower()
    if normalized not in VERBOSITY_PRESETS:
        raise ValueError(
            f"Invalid value for '{source}': expected one of "
            f"{sorted(VERBOSITY_PRESETS)}, got {value!r}."
        )
    return normalized


def _coerce_file_value(*, field_name: str, raw_value: object, source: str) -> object:
    if field_name in _FLOAT_FIELDS:
        if isinstance(raw_value, bool) or not isinstance(raw_value, int | float):
            raise ValueError(
                f"Invalid value for '{source}': expected float, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        return _check_float(value=float(raw_value), source=source)

    if not isinstance(raw_value, str):
        raise ValueError(
            f"Invalid value for '{source}': expected str, got "
            f"{type(raw_value).__name__} ({raw_value!r})."
        )
    normalized = raw_value.strip()
    if not normalized:
        raise ValueError(f"Invalid value for '{source}': expected non-empty string.")
    if field_name == "verbosity":
        return _check_verbosity(value=normalized, source=source)
    return normalized


def _coerce_env_value(*, field_name: str, raw_value: str, env_name: str) -> object:
    if field_name in _FLOAT_FIELDS:
        try:
            parsed = float(raw_value.strip())
        except ValueError as error:
            raise ValueError(
                f"Invalid environment override '{env_name}': expected float, got {raw_value!r}."
            ) from error
        return _check_float(value=parsed, source=env_name)

    normalized = raw_value.strip()
    if not normalized:
        raise ValueError(
            f"Invalid environment override '{env_name}': expected non-empty string."
        )
    if field_name == "verbosity":
        return _check_verbosity(value=normalized, source=env_name)
    return normalized


def _default_values() -> dict[str, object]:
    defaults = TaskwrightConfig()
    return {field.name: getattr(defaults, field.name) for field in fields(TaskwrightConfig)}


def _apply_toml_payload(
    *,
    values: dict[str, object],
    payload: dict[str, object],
    path: Path,
) -> None:
    for key, raw_value in payload.items():
        section_map = _SECTION_KEY_MAP.get(key)
        if section_map is None:
            logger.warning("Ignoring unknown taskwright config key '%s'.", key)
            continue
        if not isinstance(raw_value, dict):
            raise ValueError(f"Invalid value for '{key}' in '{path}': expected table.")
        for section_key, section_value in cast("dict[str, object]", raw_value).items():
            field_name = section_map.get(section_key)
            if field_name is None:
                logger.warning(
                    "Ignoring unknown taskwright config key '%s.%s'.",
                    key,
                    section_key,
                )
                continue
            values[field_name] = _coerce_file_value(
                field_name=field_name,
                raw_value=section_value,
                source=f"{key}.{section_key}",
            )


def _apply_env_overrides(values: dict[str, object]) -> None:
    for env_name, field_name in _ENV_OVERRIDE_MAP.items():
        raw_value = os.getenv(env_name)
        if raw_value is None:
            continue
        values[field_name] = _coerce_env_value(
            field_name=field_name,
            raw_value=raw_value,
            env_name=env_name,
        )


def _build_config(values: dict[str, object]) -> TaskwrightConfig:
    return TaskwrightConfig(
        tick_interval_seconds=cast("float", values["tick_interval_seconds"]),
        kill_grace_seconds=cast("float", values["kill_grace_seconds"]),
        wait_timeout_seconds=cast("float", values["wait_timeout_seconds"]),
        wait_poll_interval_seconds=cast("float", values["wait_poll_interval_seconds"]),
        connect_timeout_seconds=cast("float", values["connect_timeout_seconds"]),
        endpoint=cast("str | None", values["endpoint"]),
        verbosity=cast("str", values["verbosity"]),
    )


def load_config(repo_root: Path) -> TaskwrightConfig:
    """Load `.taskwright/config.toml` and apply environment overrides."""

    values = _default_values()
    path = config_path(repo_root)
    if path.is_file():
        payload_obj = tomllib.loads(path.read_text(encoding="utf-8"))
        payload = cast("dict[str, object]", payload_obj)
        _apply_toml_payload(values=values, payload=payload, path=path)

    _apply_env_overrides(values)
    return _build_config(values)
