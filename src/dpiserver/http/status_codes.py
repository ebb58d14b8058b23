"""
=============================================================================
HTTP STATUS CODES
=============================================================================

The daemons answer with a very small subset of HTTP/1.1 status codes:

    ┌────────┬───────────────────────────────────────────────────────────┐
    │  200   │ OK - the listing, file, member or page follows            │
    │  403   │ Forbidden - the resource exists but cannot be read        │
    │  404   │ Not Found - nothing at that path (or the path was unsafe) │
    │  500   │ Internal Server Error - anything else                     │
    └────────┴───────────────────────────────────────────────────────────┘

Failures are detected as OS error numbers deep in the resource layer;
status_for_errno() is the one place that turns them into HTTP codes.

=============================================================================
"""

import errno
from enum import IntEnum
from typing import Optional


class HTTPStatus(IntEnum):
    """
    HTTP status codes used by the daemons.

        >>> HTTPStatus.NOT_FOUND == 404
        True
        >>> HTTPStatus.NOT_FOUND.phrase
        'Not Found'
    """

    OK = 200
    FORBIDDEN = 403
    NOT_FOUND = 404
    INTERNAL_SERVER_ERROR = 500

    @property
    def phrase(self) -> str:
        """Reason phrase for the status line (HTTP/1.1 404 Not Found)."""
        return _STATUS_PHRASES.get(self, "Unknown")


_STATUS_PHRASES = {
    HTTPStatus.OK: "OK",
    HTTPStatus.FORBIDDEN: "Forbidden",
    HTTPStatus.NOT_FOUND: "Not Found",
    HTTPStatus.INTERNAL_SERVER_ERROR: "Internal Server Error",
}


def status_for_errno(err: Optional[int]) -> HTTPStatus:
    """
    Map an OS error number to the status reported to the browser.

        EACCES → 403
        ENOENT → 404
        other  → 500
    """
    if err == errno.EACCES:
        return HTTPStatus.FORBIDDEN
    if err == errno.ENOENT:
        return HTTPStatus.NOT_FOUND
    return HTTPStatus.INTERNAL_SERVER_ERROR
