"""
Unit tests for the connection state machine.
"""

import errno
from typing import List, Optional

import pytest

from dpiserver.config import DaemonConfig, RuntimeSettings
from dpiserver.core.connection import (
    BodyStreaming,
    Connection,
    Done,
    Err,
    Reading,
    Start,
)
from dpiserver.core.transport import Transport
from dpiserver.dpip.records import RecordError, build_record
from dpiserver.http.response import ResponseHead
from dpiserver.handlers.base import DaemonHandler, Producer
from dpiserver.resources.paths import ResourceError


class FakeTransport(Transport):
    """Scripted transport: queued input, optionally throttled output."""

    def __init__(self, incoming: Optional[List[bytes]] = None, send_limit: Optional[int] = None):
        self.incoming = list(incoming or [])
        self.sent = bytearray()
        self.send_limit = send_limit
        self.closed = 0

    @property
    def read_fd(self) -> int:
        return 100

    @property
    def write_fd(self) -> int:
        return 100

    def recv(self, size: int) -> bytes:
        if not self.incoming:
            raise BlockingIOError()
        return self.incoming.pop(0)

    def send(self, data: bytes) -> int:
        n = len(data) if self.send_limit is None else min(len(data), self.send_limit)
        if n == 0:
            raise BlockingIOError()
        self.sent += data[:n]
        return n

    def close(self) -> None:
        self.closed += 1


class ChunkProducer(Producer):
    """Emits fixed chunks."""

    def __init__(self, chunks: List[bytes]):
        self.chunks = list(chunks)
        self.produced = 0
        self.closed = 0

    def http_head(self) -> bytes:
        return ResponseHead().set_header("Content-Type", "text/plain").to_bytes()

    def page_head(self) -> bytes:
        return b"<head>"

    def next_chunk(self) -> bytes:
        if not self.chunks:
            return b""
        self.produced += 1
        return self.chunks.pop(0)

    def page_foot(self) -> bytes:
        return b"<foot>"

    def close(self) -> None:
        self.closed += 1


class StubHandler(DaemonHandler):
    """Handler returning a prepared producer or raising a prepared error."""

    name = "file"
    default_resource = "/"

    def __init__(self, config, producer=None, error=None):
        super().__init__(config)
        self.producer = producer
        self.error = error
        self.requests = []

    def open(self, request, legacy_style):
        self.requests.append((request, legacy_style))
        if self.error is not None:
            raise self.error
        return self.producer


@pytest.fixture
def settings() -> RuntimeSettings:
    return RuntimeSettings()


def make_connection(config, settings, incoming, producer=None, error=None, send_limit=None):
    transport = FakeTransport(incoming, send_limit)
    handler = StubHandler(config, producer, error)
    return Connection(transport, handler, settings, config), transport, handler


def drive(conn: Connection, limit: int = 100) -> None:
    """Step the connection until it finishes."""
    for _ in range(limit):
        if conn.finished:
            return
        if conn.read_wanted:
            conn.on_readable()
        elif conn.write_wanted:
            conn.on_writable()
    raise AssertionError("connection did not finish")


class TestConnectionReading:
    """Tests for authentication and request dispatch."""

    def test_starts_reading(self, config: DaemonConfig, settings):
        """Test the initial state and flags."""
        conn, _, _ = make_connection(config, settings, [])
        assert isinstance(conn.state, Reading)
        assert conn.read_wanted and not conn.write_wanted
        assert conn.is_idle

    def test_auth_then_request(self, config, settings, auth_record):
        """Test that an authenticated request is dispatched."""
        producer = ChunkProducer([b"x"])
        request = build_record(cmd="open_url", url="file:/tmp/")
        conn, _, handler = make_connection(config, settings, [auth_record + request], producer)

        conn.on_readable()

        assert isinstance(conn.state, Start)
        assert conn.write_wanted and not conn.read_wanted
        assert conn.url == "file:/tmp/"
        assert handler.requests[0][0].cmd == "open_url"

    def test_records_split_across_reads(self, config, settings, auth_record):
        """Test that partial records wait for more bytes."""
        request = build_record(cmd="open_url", url="file:/tmp/")
        conn, _, _ = make_connection(
            config, settings,
            [auth_record[:5], auth_record[5:] + request[:7], request[7:]],
            ChunkProducer([]),
        )

        conn.on_readable()
        conn.on_readable()
        assert isinstance(conn.state, Reading)
        conn.on_readable()
        assert isinstance(conn.state, Start)

    def test_auth_failure(self, config, settings):
        """Test that a bad secret ends the connection without output."""
        bad = build_record(cmd="auth", msg="wrong")
        conn, transport, handler = make_connection(config, settings, [bad])

        conn.on_readable()

        assert conn.error and conn.auth_failed
        assert conn.finished
        assert not handler.requests
        assert transport.sent == b""

    def test_request_before_auth_rejected(self, config, settings):
        """Test that the first record must be the auth record."""
        request = build_record(cmd="open_url", url="file:/")
        conn, _, handler = make_connection(config, settings, [request])

        conn.on_readable()

        assert conn.auth_failed
        assert not handler.requests

    def test_no_auth_required(self, config, settings):
        """Test that require_auth=False dispatches the first record."""
        config.require_auth = False
        request = build_record(cmd="open_url", url="file:/")
        conn, _, _ = make_connection(config, settings, [request], ChunkProducer([]))

        conn.on_readable()
        assert isinstance(conn.state, Start)

    def test_malformed_record(self, config, settings):
        """Test that garbage is a protocol error."""
        conn, transport, _ = make_connection(config, settings, [b"GET / HTTP/1.1\r\n"])
        conn.on_readable()
        assert conn.error
        assert transport.sent == b""

    def test_peer_eof(self, config, settings):
        """Test that EOF while reading finishes normally."""
        conn, _, _ = make_connection(config, settings, [b""])
        conn.on_readable()
        assert conn.done and not conn.error

    def test_bad_url_is_protocol_error(self, config, settings, auth_record):
        """Test that a handler's RecordError ends the connection."""
        request = build_record(cmd="open_url", url="http://example.com/")
        conn, transport, _ = make_connection(
            config, settings, [auth_record + request], error=RecordError("not a file: URL")
        )

        conn.on_readable()

        assert conn.error
        assert transport.sent == b""


class TestConnectionHousekeeping:
    """Tests for DpiBye and the style toggle."""

    def test_dpi_bye(self, config, settings, auth_record):
        """Test that DpiBye requests shutdown and finishes."""
        conn, transport, _ = make_connection(
            config, settings, [auth_record + build_record(cmd="DpiBye")]
        )

        conn.on_readable()

        assert settings.shutdown_requested
        assert conn.done
        assert transport.sent == b""

    def test_toggle(self, config, settings, auth_record):
        """Test that a toggle flips the style and sends one reload record."""
        request = build_record(cmd="open_url", url="dpi:/file/toggle")
        conn, transport, handler = make_connection(config, settings, [auth_record + request])

        drive(conn)

        assert settings.legacy_style
        assert bytes(transport.sent) == b"<cmd='reload_request' '>"
        assert not handler.requests
        assert conn.done

    def test_style_snapshot(self, config, settings, auth_record):
        """Test that the style is copied at dispatch time."""
        settings.legacy_style = True
        request = build_record(cmd="open_url", url="file:/")
        conn, _, handler = make_connection(config, settings, [auth_record + request], ChunkProducer([]))

        conn.on_readable()
        settings.toggle_style()

        assert conn.legacy_style is True
        assert handler.requests[0][1] is True


class TestConnectionWriting:
    """Tests for the response states."""

    def test_full_response(self, config, settings, auth_record):
        """Test the order of everything written."""
        producer = ChunkProducer([b"one", b"two"])
        request = build_record(cmd="open_url", url="file:/tmp/x")
        conn, transport, _ = make_connection(config, settings, [auth_record + request], producer)

        drive(conn)

        assert bytes(transport.sent) == (
            b"<cmd='start_send_page' url='file:/tmp/x' '>"
            b"HTTP/1.1 200 OK\r\nContent-Type: text/plain\r\n\r\n"
            b"<head>onetwo<foot>"
        )
        assert conn.done and not conn.error

    def test_one_chunk_per_turn(self, config, settings, auth_record):
        """Test that a body turn writes exactly one chunk."""
        producer = ChunkProducer([b"a", b"b", b"c"])
        request = build_record(cmd="open_url", url="file:/x")
        conn, _, _ = make_connection(config, settings, [auth_record + request], producer)

        conn.on_readable()
        for _ in range(3):
            conn.on_writable()
        assert isinstance(conn.state, BodyStreaming)
        assert producer.produced == 0

        conn.on_writable()
        assert producer.produced == 1

    def test_backpressure(self, config, settings, auth_record):
        """Test that no chunk is produced while output is pending."""
        producer = ChunkProducer([b"x" * 100, b"y" * 100])
        request = build_record(cmd="open_url", url="file:/x")
        conn, transport, _ = make_connection(
            config, settings, [auth_record + request], producer, send_limit=7
        )

        pending_at_produce = []
        next_chunk = producer.next_chunk

        def checked_next_chunk():
            pending_at_produce.append(conn.pending_output)
            return next_chunk()
        producer.next_chunk = checked_next_chunk

        conn.on_readable()
        drive(conn, limit=1000)

        assert pending_at_produce == [0, 0, 0]
        assert transport.sent.endswith(b"x" * 100 + b"y" * 100 + b"<foot>")

    def test_resource_error_page(self, config, settings, auth_record):
        """Test that a resolution failure yields one error response."""
        request = build_record(cmd="open_url", url="file:/missing")
        conn, transport, _ = make_connection(
            config, settings, [auth_record + request],
            error=ResourceError(errno.ENOENT, "No such file"),
        )

        conn.on_readable()
        assert isinstance(conn.state, Err)
        drive(conn)

        assert bytes(transport.sent) == (
            b"<cmd='start_send_page' url='file:/missing' '>"
            b"HTTP/1.1 404 Not Found\r\n"
            b"Content-Type: text/plain\r\n"
            b"Content-Length: 39\r\n"
            b"\r\n"
            b"404 Not Found\nNo such file or directory"
        )

    def test_permission_error_page(self, config, settings, auth_record):
        """Test that a plain OSError from open() is reported too."""
        request = build_record(cmd="open_url", url="file:/root/x")
        conn, transport, _ = make_connection(
            config, settings, [auth_record + request],
            error=PermissionError(errno.EACCES, "Permission denied"),
        )

        drive(conn)
        assert b"HTTP/1.1 403 Forbidden\r\n" in transport.sent

    def test_send_failure(self, config, settings, auth_record):
        """Test that a broken peer ends the connection as an error."""
        producer = ChunkProducer([b"x"])
        request = build_record(cmd="open_url", url="file:/x")
        conn, transport, _ = make_connection(config, settings, [auth_record + request], producer)

        def broken(data):
            raise BrokenPipeError(errno.EPIPE, "Broken pipe")
        transport.send = broken

        conn.on_readable()
        conn.on_writable()
        assert conn.error

    def test_unexpected_handler_error(self, config, settings, auth_record):
        """Test that a non-OS error from open() only ends its own connection."""
        request = build_record(cmd="open_url", url="file:/x")
        broken, broken_transport, _ = make_connection(
            config, settings, [auth_record + request], error=ValueError("bad value")
        )
        healthy, healthy_transport, _ = make_connection(
            config, settings, [auth_record + request], ChunkProducer([b"ok"])
        )

        broken.on_readable()
        drive(healthy)

        assert broken.error and broken.finished
        assert broken_transport.sent == b""
        assert healthy.done and not healthy.error
        assert healthy_transport.sent.endswith(b"<head>ok<foot>")

    def test_unexpected_producer_error(self, config, settings, auth_record):
        """Test that a non-OS error while producing a chunk ends the connection."""
        producer = ChunkProducer([b"x"])
        request = build_record(cmd="open_url", url="file:/x")
        conn, _, _ = make_connection(config, settings, [auth_record + request], producer)

        def broken():
            raise ValueError("bad chunk")
        producer.next_chunk = broken

        drive(conn)
        assert conn.error and not conn.done


class TestConnectionClose:
    """Tests for releasing resources."""

    def test_close_once(self, config, settings, auth_record):
        """Test that close() releases producer and transport once."""
        producer = ChunkProducer([])
        request = build_record(cmd="open_url", url="file:/x")
        conn, transport, _ = make_connection(config, settings, [auth_record + request], producer)
        conn.on_readable()

        conn.close()
        conn.close()

        assert producer.closed == 1
        assert transport.closed == 1

    def test_context_manager(self, config, settings):
        """Test closing through a with block."""
        conn, transport, _ = make_connection(config, settings, [])
        with conn:
            pass
        assert transport.closed == 1

    def test_abandon(self, config, settings):
        """Test giving up on an idle connection."""
        conn, _, _ = make_connection(config, settings, [])
        conn.abandon()
        assert conn.done
        assert isinstance(conn.state, Done)
