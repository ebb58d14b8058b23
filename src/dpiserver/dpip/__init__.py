"""
dpip wire protocol: tagged records and the shared-secret handshake.
"""

from .records import Record, RecordError, RecordReader, build_record, parse_record
from .auth import DEFAULT_KEYS_FILE, check_auth, read_shared_secret

__all__ = [
    "Record",
    "RecordError",
    "RecordReader",
    "build_record",
    "parse_record",
    "DEFAULT_KEYS_FILE",
    "check_auth",
    "read_shared_secret",
]
