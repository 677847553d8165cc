"""Non-blocking draining of a child's output pipes.

Every pipe is switched to non-blocking mode and registered with a selector.
A drain waits at most one tick for any pipe to become readable, then reads
each readable pipe until it would block or reports end-of-file. The child
therefore never sits on a full pipe for longer than one tick while the
supervisor is busy elsewhere.
"""

import os
import selectors
from dataclasses import dataclass, field
from typing import BinaryIO, Dict, Optional

from .log import get_logger

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 4096


@dataclass
class PipeBuffer:
    """Bytes accumulated from one pipe, in the order the child wrote them."""

    name: str
    stream: BinaryIO
    data: bytearray = field(default_factory=bytearray)
    eof: bool = False

    @property
    def fd(self) -> int:
        return self.stream.fileno()


class StreamDrainer:
    """Accumulates output from one or two pipes without blocking."""

    def __init__(
        self,
        pipes: Dict[str, Optional[BinaryIO]],
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._chunk_size = chunk_size
        self._buffers: Dict[str, PipeBuffer] = {}
        self._selector = selectors.DefaultSelector()
        self._closed = False
        for name, stream in pipes.items():
            if stream is None:
                continue
            buffer = PipeBuffer(name, stream)
            os.set_blocking(buffer.fd, False)
            self._selector.register(buffer.fd, selectors.EVENT_READ, buffer)
            self._buffers[name] = buffer

    @property
    def exhausted(self) -> bool:
        """True once every pipe has reported end-of-file (or there are none)."""
        return all(buffer.eof for buffer in self._buffers.values())

    def output(self, name: str) -> bytes:
        """Everything read so far from the named pipe."""
        buffer = self._buffers.get(name)
        return bytes(buffer.data) if buffer else b""

    def drain(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for output and read what is available.

        Returns:
            True if every pipe is at end-of-file
        """
        if self._closed or self.exhausted:
            return True
        for key, _ in self._selector.select(max(timeout, 0.0)):
            self._read_available(key.data)
        return self.exhausted

    def flush(self, timeout: float) -> None:
        """Final drain after the child exited.

        Reads until every pipe would block or is at end-of-file. A pipe kept
        open by a grandchild is not waited on beyond ``timeout``.
        """
        if self._closed or self.exhausted:
            return
        for key, _ in self._selector.select(max(timeout, 0.0)):
            self._read_available(key.data)
        for buffer in self._buffers.values():
            if not buffer.eof:
                self._read_available(buffer)

    def close(self) -> None:
        """Close the selector and every pipe. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._selector.close()
        for buffer in self._buffers.values():
            try:
                buffer.stream.close()
            except OSError as e:
                logger.debug("Error closing %s pipe: %s", buffer.name, e)

    def _read_available(self, buffer: PipeBuffer) -> None:
        """Read until EAGAIN or EOF, appending to the buffer."""
        while True:
            try:
                chunk = os.read(buffer.fd, self._chunk_size)
            except BlockingIOError:
                return
            if not chunk:
                buffer.eof = True
                self._selector.unregister(buffer.fd)
                return
            buffer.data.extend(chunk)
