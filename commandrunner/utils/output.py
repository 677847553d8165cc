"""Output utilities for forwarding captured bytes with proper flushing."""

import sys
from typing import BinaryIO, Optional, TextIO


def _binary(stream: TextIO) -> BinaryIO:
    # Test runners may swap in text-only streams without a buffer.
    return getattr(stream, "buffer", None) or stream


def write_stdout(data: bytes, stream: Optional[TextIO] = None) -> None:
    """Write raw bytes to stdout and flush.

    Args:
        data: Bytes to write, typically a child's captured output
        stream: Text stream to write through (default: sys.stdout)
    """
    target = stream or sys.stdout
    binary = _binary(target)
    if binary is target:
        target.write(data.decode("utf-8", "replace"))
    else:
        binary.write(data)
    target.flush()


def write_stderr(data: bytes, stream: Optional[TextIO] = None) -> None:
    """Write raw bytes to stderr and flush."""
    write_stdout(data, stream or sys.stderr)

