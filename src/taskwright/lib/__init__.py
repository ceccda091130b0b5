"""Core taskwright library exports."""

from taskwright.lib.context import ContextScope, ExecutionContext, Verbosity
from taskwright.lib.runtime import Runtime, build_runtime

__all__ = ["ContextScope", "ExecutionContext", "Runtime", "Verbosity", "build_runtime"]
