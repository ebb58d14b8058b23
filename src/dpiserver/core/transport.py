"""
Byte transports under a connection.

A multiplexed daemon talks to each peer over one accepted socket. A
single-shot daemon is started with the peer already wired to its stdin
and stdout, which may be two different descriptors:

    SocketTransport             PipeTransport
    ───────────────             ─────────────
    read_fd == write_fd         read_fd = 0, write_fd = 1

Both are non-blocking: recv()/send() raise BlockingIOError instead of
waiting, and the reactor decides when to try again.
"""

import logging
import os
import socket
from abc import ABC, abstractmethod


logger = logging.getLogger(__name__)


class Transport(ABC):
    """A non-blocking, bidirectional byte channel."""

    @property
    @abstractmethod
    def read_fd(self) -> int:
        """Descriptor watched for read readiness."""

    @property
    @abstractmethod
    def write_fd(self) -> int:
        """Descriptor watched for write readiness."""

    @abstractmethod
    def recv(self, size: int) -> bytes:
        """Receive up to size bytes; b"" means the peer closed."""

    @abstractmethod
    def send(self, data: bytes) -> int:
        """Send as much of data as possible; returns the byte count."""

    @abstractmethod
    def close(self) -> None:
        """Release the descriptors."""


class SocketTransport(Transport):
    """An accepted stream socket."""

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self.sock.setblocking(False)
        self._fd = sock.fileno()

    @property
    def read_fd(self) -> int:
        return self._fd

    @property
    def write_fd(self) -> int:
        return self._fd

    def recv(self, size: int) -> bytes:
        return self.sock.recv(size)

    def send(self, data: bytes) -> int:
        return self.sock.send(data)

    def close(self) -> None:
        try:
            self.sock.close()
        except OSError:
            pass  # Already gone


class PipeTransport(Transport):
    """The process's own stdin/stdout (single-shot daemons)."""

    def __init__(self, read_fd: int = 0, write_fd: int = 1):
        self._read_fd = read_fd
        self._write_fd = write_fd
        os.set_blocking(read_fd, False)
        os.set_blocking(write_fd, False)
        self._closed = False

    @property
    def read_fd(self) -> int:
        return self._read_fd

    @property
    def write_fd(self) -> int:
        return self._write_fd

    def recv(self, size: int) -> bytes:
        return os.read(self._read_fd, size)

    def send(self, data: bytes) -> int:
        return os.write(self._write_fd, data)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for fd in {self._read_fd, self._write_fd}:
            try:
                os.close(fd)
            except OSError as e:
                logger.debug(f"Closing fd {fd}: {e}")
