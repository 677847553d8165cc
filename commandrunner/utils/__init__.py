"""Utility modules for commandrunner."""

from .output import write_stderr, write_stdout

__all__ = ["write_stdout", "write_stderr"]
