"""Process execution and cooperative task orchestration for automation tools."""

__version__ = "0.1.0"
