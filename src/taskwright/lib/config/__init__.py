"""Configuration loading."""

from taskwright.lib.config._paths import resolve_repo_root
from taskwright.lib.config.settings import TaskwrightConfig, load_config

__all__ = ["TaskwrightConfig", "load_config", "resolve_repo_root"]
