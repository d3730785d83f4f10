"""
framing.py: reassemble terminator-delimited transmissions from a byte stream.

A stream read may carry part of a transmission, several transmissions, or
both. ``FrameBuffer`` holds whatever has arrived and hands back one complete
transmission (without its terminator) at a time; residual bytes stay for the
next call. ``FrameReader`` binds a buffer to a blocking socket.
"""

import logging
import socket

from msgboard.protocol import TERMINATOR_BYTES

logger: logging.Logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096
MAX_MESSAGE_SIZE = 1 << 20  # 1 MiB of pending bytes without a terminator

_TAIL = len(TERMINATOR_BYTES) - 1


class FrameTooLarge(ValueError):
    """A pending transmission grew past the size cap before its terminator."""


class FrameBuffer:
    __slots__ = ("max_message", "_buf", "_r", "_scan", "_discarding")

    def __init__(self, max_message: int = MAX_MESSAGE_SIZE):
        self.max_message = max_message
        self._buf = bytearray()
        self._r = 0  # start of the next transmission
        self._scan = 0  # no terminator starts before this offset
        self._discarding = False

    def __len__(self) -> int:
        return len(self._buf) - self._r

    def feed(self, data: bytes) -> None:
        self._buf += data

    def pop(self) -> bytes | None:
        """
        Return the next complete transmission, or None if more bytes are needed.

        Raises:
            FrameTooLarge: once per oversized transmission. Its bytes are then
            skipped up to and including the next terminator.
        """
        while True:
            pos = self._buf.find(TERMINATOR_BYTES, max(self._r, self._scan))
            if pos < 0:
                self._scan = max(self._r, len(self._buf) - _TAIL)
                if len(self) > self.max_message:
                    # keep only what could be the start of a split terminator
                    del self._buf[: self._scan]
                    self._r = self._scan = 0
                    if not self._discarding:
                        self._discarding = True
                        raise FrameTooLarge(
                            f"Message exceeds {self.max_message} bytes."
                        )
                return None

            message = bytes(self._buf[self._r : pos])
            self._r = self._scan = pos + len(TERMINATOR_BYTES)
            self._compact()
            if self._discarding:
                self._discarding = False
                continue
            return message

    def _compact(self) -> None:
        # Drop consumed bytes once they dominate the buffer.
        if self._r and self._r * 2 >= len(self._buf):
            del self._buf[: self._r]
            self._scan -= self._r
            self._r = 0


class FrameReader:
    def __init__(
        self,
        sock: socket.socket,
        *,
        chunk_size: int = CHUNK_SIZE,
        max_message: int = MAX_MESSAGE_SIZE,
    ):
        self.sock = sock
        self.chunk_size = chunk_size
        self.buffer = FrameBuffer(max_message)

    def read_next(self) -> bytes | None:
        """
        Block until one complete transmission is available.

        Returns None when the peer shuts the stream down. OSError from the
        socket propagates; signal interruptions are retried by the socket layer.
        """
        while True:
            message = self.buffer.pop()
            if message is not None:
                return message
            chunk = self.sock.recv(self.chunk_size)
            if not chunk:
                if len(self.buffer):
                    logger.debug("peer closed with %d unterminated bytes", len(self.buffer))
                return None
            self.buffer.feed(chunk)
