"""
=============================================================================
HTTP RESPONSE FRAMING
=============================================================================

After the begin record, a daemon writes plain HTTP/1.1 response bytes
into the connection. The browser parses them exactly like a response
from the network:

    <cmd='start_send_page' url='file:/etc/motd' '>     ← dpip record
    HTTP/1.1 200 OK\r\n                                ← status line
    Content-Type: text/plain\r\n                       ← headers
    Content-Length: 286\r\n
    \r\n                                               ← end of head
    Welcome to ...                                     ← body, streamed

Only the head is built here. Bodies are streamed chunk by chunk by the
producers, so unlike a buffered web framework there is no body field
and no automatic Content-Length: a head carries Content-Length only
when the producer knows the size up front.

Error responses are the exception: they are small and complete, so
error_response() renders head and body in one go.

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from .status_codes import HTTPStatus


@dataclass
class ResponseHead:
    """
    Status line plus headers of a streamed response.

    Example:
        >>> head = ResponseHead().set_header("Content-Type", "text/html")
        >>> head.to_bytes()
        b'HTTP/1.1 200 OK\\r\\nContent-Type: text/html\\r\\n\\r\\n'
    """

    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    reason: Optional[str] = None     # Overrides the standard phrase
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        """Get the status line, e.g. "HTTP/1.1 404 Not Found"."""
        reason = self.reason if self.reason is not None else self.status.phrase
        return f"{self.version} {int(self.status)} {reason}"

    def set_header(self, name: str, value: str) -> "ResponseHead":
        """Set a header. Returns self for chaining."""
        self.headers[name] = value
        return self

    def to_bytes(self) -> bytes:
        """Serialize the head, including the blank line that ends it."""
        lines = [self.status_line]
        for name, value in self.headers.items():
            lines.append(f"{name}: {value}")
        lines.append("")
        lines.append("")
        return "\r\n".join(lines).encode("utf-8", errors="surrogateescape")


def error_response(
    status: HTTPStatus,
    body: str,
    reason: Optional[str] = None,
    content_type: str = "text/plain",
) -> bytes:
    """
    Render a complete error response with a Content-Length.

    Args:
        status: Status code to report.
        body: Text of the body.
        reason: Custom reason phrase ("500 Execution Error").
        content_type: Content-Type of the body.
    """
    payload = body.encode("utf-8", errors="replace")
    head = ResponseHead(status=status, reason=reason)
    head.set_header("Content-Type", content_type)
    head.set_header("Content-Length", str(len(payload)))
    return head.to_bytes() + payload


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231), always in GMT.

    Example: Wed, 01 Jan 2026 12:00:00 GMT
    """
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)

    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


def http_date_from_timestamp(timestamp: float) -> str:
    """Format a POSIX timestamp (st_mtime) as an HTTP-date."""
    return format_http_date(datetime.fromtimestamp(timestamp, tz=timezone.utc))
