"""
Unit tests for HTTP response heads and error responses.
"""

import errno

import pytest

from dpiserver.http.response import (
    ResponseHead,
    error_response,
    format_http_date,
    http_date_from_timestamp,
)
from dpiserver.http.status_codes import HTTPStatus, status_for_errno


class TestResponseHead:
    """Tests for ResponseHead class."""

    def test_status_line(self):
        """Test status line generation."""
        assert ResponseHead().status_line == "HTTP/1.1 200 OK"
        assert ResponseHead(status=HTTPStatus.NOT_FOUND).status_line == "HTTP/1.1 404 Not Found"

    def test_custom_reason(self):
        """Test that a custom reason phrase replaces the standard one."""
        head = ResponseHead(status=HTTPStatus.INTERNAL_SERVER_ERROR, reason="Execution Error")
        assert head.status_line == "HTTP/1.1 500 Execution Error"

    def test_to_bytes_ends_with_blank_line(self):
        """Test serialization of status line, headers and blank line."""
        head = ResponseHead().set_header("Content-Type", "text/html")
        assert head.to_bytes() == b"HTTP/1.1 200 OK\r\nContent-Type: text/html\r\n\r\n"

    def test_no_automatic_headers(self):
        """Test that a streamed head carries only the headers that were set."""
        assert ResponseHead().to_bytes() == b"HTTP/1.1 200 OK\r\n\r\n"

    def test_set_header_chaining(self):
        """Test method chaining for headers."""
        head = (ResponseHead()
            .set_header("X-One", "1")
            .set_header("X-Two", "2"))

        assert head.headers == {"X-One": "1", "X-Two": "2"}

    def test_header_order_preserved(self):
        """Test that headers are written in the order they were set."""
        data = (ResponseHead()
            .set_header("Content-Encoding", "gzip")
            .set_header("Content-Type", "text/plain")
            .to_bytes())

        assert data.index(b"Content-Encoding") < data.index(b"Content-Type")


class TestErrorResponse:
    """Tests for complete error responses."""

    def test_content_length_matches_body(self):
        """Test that Content-Length counts the encoded body."""
        data = error_response(HTTPStatus.NOT_FOUND, "404 Not Found\nNo such file or directory")
        head, _, body = data.partition(b"\r\n\r\n")

        assert head.startswith(b"HTTP/1.1 404 Not Found\r\n")
        assert b"Content-Type: text/plain" in head
        assert f"Content-Length: {len(body)}".encode() in head
        assert body == b"404 Not Found\nNo such file or directory"

    def test_custom_reason_and_type(self):
        """Test the script failure response format."""
        data = error_response(
            HTTPStatus.INTERNAL_SERVER_ERROR,
            "DLS file not found",
            reason="Execution Error",
            content_type="text/html",
        )

        assert data == (
            b"HTTP/1.1 500 Execution Error\r\n"
            b"Content-Type: text/html\r\n"
            b"Content-Length: 18\r\n"
            b"\r\n"
            b"DLS file not found"
        )


class TestHTTPStatus:
    """Tests for HTTPStatus enum."""

    def test_status_phrases(self):
        """Test that all statuses have phrases."""
        assert HTTPStatus.OK.phrase == "OK"
        assert HTTPStatus.FORBIDDEN.phrase == "Forbidden"
        assert HTTPStatus.NOT_FOUND.phrase == "Not Found"
        assert HTTPStatus.INTERNAL_SERVER_ERROR.phrase == "Internal Server Error"

    @pytest.mark.parametrize("err,status", [
        (errno.EACCES, HTTPStatus.FORBIDDEN),
        (errno.ENOENT, HTTPStatus.NOT_FOUND),
        (errno.EIO, HTTPStatus.INTERNAL_SERVER_ERROR),
        (None, HTTPStatus.INTERNAL_SERVER_ERROR),
    ])
    def test_status_for_errno(self, err, status):
        """Test the error number to status mapping."""
        assert status_for_errno(err) == status


class TestFormatHTTPDate:
    """Tests for HTTP date formatting."""

    def test_format(self):
        """Test HTTP date format."""
        from datetime import datetime, timezone

        dt = datetime(2026, 1, 15, 12, 30, 45, tzinfo=timezone.utc)
        assert format_http_date(dt) == "Thu, 15 Jan 2026 12:30:45 GMT"

    def test_from_timestamp(self):
        """Test formatting of an st_mtime value."""
        assert http_date_from_timestamp(0) == "Thu, 01 Jan 1970 00:00:00 GMT"
