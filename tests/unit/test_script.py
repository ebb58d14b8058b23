"""
Unit tests for the dls (local script) daemon.
"""

import os
from pathlib import Path

import pytest

from dpiserver.core.reactor import Reactor
from dpiserver.core.transport import PipeTransport
from dpiserver.dpip.records import RecordError, build_record, parse_record
from dpiserver.handlers.script import MAX_NAME_LENGTH, ScriptError, ScriptHandler


HELLO_SCRIPT = """#!/bin/sh
printf 'HTTP/1.1 200 OK\\r\\nContent-Type: text/plain\\r\\n\\r\\n'
printf 'hello %s' "${1:-world}"
"""


@pytest.fixture
def dls_dir(tmp_path: Path) -> Path:
    """A script directory with one runnable and one non-executable script."""
    root = tmp_path / "dls"
    root.mkdir()

    for name in ("hello.dls", "default.dls"):
        script = root / name
        script.write_text(HELLO_SCRIPT)
        script.chmod(0o755)

    (root / "plain.dls").write_text(HELLO_SCRIPT)
    (root / "plain.dls").chmod(0o644)
    return root


@pytest.fixture
def handler(config, dls_dir: Path) -> ScriptHandler:
    config.dls_dir = str(dls_dir)
    return ScriptHandler(config)


def run_filter(config, handler, data: bytes):
    """Serve one connection over a pair of pipes; returns (exit code, output)."""
    in_r, in_w = os.pipe()
    out_r, out_w = os.pipe()
    os.write(in_w, data)
    os.close(in_w)

    code = Reactor(config, handler).serve_single(PipeTransport(in_r, out_w))

    chunks = []
    while True:
        chunk = os.read(out_r, 65536)
        if not chunk:
            break
        chunks.append(chunk)
    os.close(out_r)
    return code, b"".join(chunks)


class TestScriptCommand:
    """Tests for resolving dls: URLs."""

    def test_with_argument(self, handler, dls_dir):
        """Test that the query becomes the single argument."""
        assert handler.script_command("dls:hello?berlin") == [str(dls_dir / "hello.dls"), "berlin"]

    def test_without_argument(self, handler, dls_dir):
        """Test a script run without arguments."""
        assert handler.script_command("dls:hello") == [str(dls_dir / "hello.dls")]

    def test_empty_argument(self, handler, dls_dir):
        """Test that a bare '?' passes an empty argument."""
        assert handler.script_command("dls:hello?") == [str(dls_dir / "hello.dls"), ""]

    def test_default_script(self, handler, dls_dir):
        """Test that an empty name runs the default script."""
        assert handler.script_command("dls:") == [str(dls_dir / "default.dls")]

    def test_not_dls(self, handler):
        """Test that other schemes are protocol errors."""
        with pytest.raises(RecordError):
            handler.script_command("file:/bin/sh")

    def test_missing(self, handler):
        """Test an unknown script."""
        with pytest.raises(ScriptError, match="DLS file not found"):
            handler.script_command("dls:nothere")

    def test_not_executable(self, handler):
        """Test a script without the owner execute bit."""
        with pytest.raises(ScriptError, match="DLS file is not executable"):
            handler.script_command("dls:plain")

    def test_name_too_long(self, handler):
        """Test the script name limit."""
        with pytest.raises(ScriptError, match="DLS name too long"):
            handler.script_command("dls:" + "x" * (MAX_NAME_LENGTH + 1))

    def test_parent_segments(self, handler):
        """Test that scripts outside the directory are unreachable."""
        with pytest.raises(ScriptError, match="DLS file not found"):
            handler.script_command("dls:../dls/hello")

    def test_nul_byte_in_name(self, handler):
        """Test that a NUL in the script name is an unknown script."""
        with pytest.raises(ScriptError, match="DLS file not found"):
            handler.script_command("dls:hel\0lo")


class TestScriptError:
    """Tests for the failure response."""

    def test_response(self):
        """Test the 500 Execution Error page."""
        assert ScriptError("DLS file not found").to_response() == (
            b"HTTP/1.1 500 Execution Error\r\n"
            b"Content-Type: text/html\r\n"
            b"Content-Length: 18\r\n"
            b"\r\n"
            b"DLS file not found"
        )


class TestScriptHandler:
    """Tests for running scripts."""

    def test_open_relays_output(self, handler):
        """Test that the producer relays the script's raw output."""
        request = parse_record(build_record(cmd="open_url", url="dls:hello?there"))
        producer = handler.open(request, False)
        try:
            assert producer.http_head() == b""
            output = b""
            while True:
                chunk = producer.next_chunk()
                if not chunk:
                    break
                output += chunk
        finally:
            producer.close()

        assert output == b"HTTP/1.1 200 OK\r\nContent-Type: text/plain\r\n\r\nhello there"

    def test_unpassable_argument(self, handler):
        """Test that an argument the OS cannot pass is an execution error."""
        request = parse_record(build_record(cmd="open_url", url="dls:hello?a\0b"))
        with pytest.raises(ScriptError, match="DLS execution error"):
            handler.open(request, False)


class TestSingleShot:
    """Tests for serving one peer over stdin/stdout style pipes."""

    def test_request(self, config, handler, auth_record):
        """Test the full exchange of a filter daemon."""
        url = "dls:hello?pipes"
        code, output = run_filter(
            config, handler, auth_record + build_record(cmd="open_url", url=url)
        )

        assert code == 0
        assert output == (
            build_record(cmd="start_send_page", url=url)
            + b"HTTP/1.1 200 OK\r\nContent-Type: text/plain\r\n\r\nhello pipes"
        )

    def test_error_page(self, config, handler, auth_record):
        """Test that a failing script request still gets one response."""
        url = "dls:plain"
        code, output = run_filter(
            config, handler, auth_record + build_record(cmd="open_url", url=url)
        )

        assert code == 0
        assert output.startswith(build_record(cmd="start_send_page", url=url))
        assert output.endswith(b"DLS file is not executable")

    def test_auth_failure(self, config, handler):
        """Test that a rejected peer makes the daemon exit 1."""
        bad = build_record(cmd="auth", msg="wrong")
        code, output = run_filter(
            config, handler, bad + build_record(cmd="open_url", url="dls:hello")
        )

        assert code == 1
        assert output == b""
