"""Core enumerations for commandrunner.

Kept separate from types.py so that every other core module can import them
without pulling in pydantic models.
"""

from enum import Enum


class StreamTarget(Enum):
    """Where a child's standard stream is connected."""

    CAPTURE = "capture"  # own pipe, accumulated into the result
    MERGE = "merge"  # stderr only: shares the stdout pipe
    DISCARD = "discard"  # /dev/null
    INHERIT = "inherit"  # the parent's stream
