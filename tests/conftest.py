"""
pytest configuration and fixtures.
"""

import os
import socket
import threading
import time
from typing import Generator, List, Optional

import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dpiserver.config import DaemonConfig, RuntimeSettings
from dpiserver.core.reactor import Reactor
from dpiserver.dpip.records import build_record
from dpiserver.handlers import HANDLERS


SECRET = "0f1e2d3c4b5a69788796a5b4c3d2e1f0"

# 2001-09-09, far older than six months
OLD_MTIME = 1000000000


@pytest.fixture
def keys_file(tmp_path: Path) -> Path:
    """Shared secret file in the "<port> <secret>" format."""
    path = tmp_path / "dpid_comm_keys"
    path.write_text(f"5020 {SECRET}\n")
    return path


@pytest.fixture
def auth_record() -> bytes:
    """A valid authentication record."""
    return build_record(cmd="auth", msg=SECRET)


@pytest.fixture
def config(keys_file: Path) -> DaemonConfig:
    """Test daemon configuration on a free TCP port."""
    return DaemonConfig(
        port=0,
        keys_file=str(keys_file),
        select_timeout=0.05,
        log_level="WARNING",
    )


@pytest.fixture
def sample_tree(tmp_path: Path) -> Path:
    """
    A small directory tree:

        tree/
        ├── docs/
        ├── b.txt            "hello\\n"
        ├── a.html           "<html></html>"
        ├── run.sh           (executable)
        ├── book.zip         (zip magic)
        ├── log.txt.gz       (gzip bytes)
        ├── data.gz          (gzip bytes, unknown inner type)
        ├── .hidden
        └── notes.txt~
    """
    root = tmp_path / "tree"
    root.mkdir()
    (root / "docs").mkdir()
    (root / "b.txt").write_bytes(b"hello\n")
    (root / "a.html").write_bytes(b"<html></html>")

    script = root / "run.sh"
    script.write_bytes(b"#!/bin/sh\necho hi\n")
    script.chmod(0o755)

    (root / "book.zip").write_bytes(b"PK\x03\x04" + b"\x00" * 60)
    (root / "log.txt.gz").write_bytes(b"\x1f\x8b\x08\x00" + b"\x00" * 20)
    (root / "data.gz").write_bytes(b"\x1f\x8b\x08\x00" + b"\x00" * 20)
    (root / ".hidden").write_bytes(b"secret")
    (root / "notes.txt~").write_bytes(b"backup")

    for path in root.iterdir():
        os.utime(path, (OLD_MTIME, OLD_MTIME))
    return root


class DaemonRunner:
    """Runs a multiplexed daemon's reactor in a background thread."""

    def __init__(self, name: str, config: DaemonConfig):
        self.settings = RuntimeSettings(legacy_style=config.legacy_style)
        self.reactor = Reactor(config, HANDLERS[name](config), self.settings)
        self.exit_code: Optional[int] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self):
        return self.reactor.address

    def start(self) -> "DaemonRunner":
        self.reactor.listen()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()
        return self

    def _run(self):
        self.exit_code = self.reactor.run()

    def connect(self) -> socket.socket:
        sock = socket.create_connection(self.address, timeout=5.0)
        return sock

    def exchange(self, *records: bytes) -> bytes:
        """Send records on a fresh connection and read until EOF."""
        with self.connect() as sock:
            for record in records:
                sock.sendall(record)
            return read_all(sock)

    def wait(self, timeout: float = 5.0) -> Optional[int]:
        """Wait for the reactor to exit; returns its exit code."""
        if self._thread is not None:
            self._thread.join(timeout)
        return self.exit_code

    def stop(self):
        self.reactor.shutdown()
        self.wait()


def read_all(sock: socket.socket) -> bytes:
    """Read from a socket until the peer closes it."""
    chunks: List[bytes] = []
    while True:
        data = sock.recv(65536)
        if not data:
            break
        chunks.append(data)
    return b"".join(chunks)


def split_response(data: bytes):
    """
    Split daemon output into (begin record, HTTP head, body).
    """
    end = data.index(b"'>") + 2
    record, rest = data[:end], data[end:]
    head, _, body = rest.partition(b"\r\n\r\n")
    return record, head.decode("latin-1"), body


@pytest.fixture
def run_daemon(config: DaemonConfig) -> Generator:
    """
    Start a daemon by name; every started daemon is stopped afterwards.

    Usage:
        daemon = run_daemon("file")
        data = daemon.exchange(auth_record, request_record)
    """
    runners: List[DaemonRunner] = []

    def start(name: str, **overrides) -> DaemonRunner:
        for key, value in overrides.items():
            setattr(config, key, value)
        runner = DaemonRunner(name, config).start()
        runners.append(runner)
        return runner

    yield start

    for runner in runners:
        runner.stop()


def wait_for(predicate, timeout: float = 5.0) -> bool:
    """Poll until predicate() is true or the timeout passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()
