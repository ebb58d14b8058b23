"""
HTTP framing for daemon responses.
"""

from .status_codes import HTTPStatus, status_for_errno
from .response import ResponseHead, error_response, format_http_date, http_date_from_timestamp

__all__ = [
    "HTTPStatus",
    "status_for_errno",
    "ResponseHead",
    "error_response",
    "format_http_date",
    "http_date_from_timestamp",
]
