"""
Shared-secret authentication for dpip peers.

The browser's launcher writes a keys file when it starts the daemons:

    ~/.dillo/dpid_comm_keys
    ───────────────────────
    5021 8f3c0a41

The first field is the launcher's port, the second the session secret.
A peer proves it belongs to this session by opening every connection
with:

    <cmd='auth' msg='8f3c0a41' '>
"""

import hmac
import logging
from pathlib import Path
from typing import Optional

from .records import Record


logger = logging.getLogger(__name__)

DEFAULT_KEYS_FILE = Path("~/.dillo/dpid_comm_keys")


def read_shared_secret(keys_file: str | Path = DEFAULT_KEYS_FILE) -> Optional[str]:
    """
    Read the session secret from the keys file.

    Returns:
        The secret string, or None if the file is missing, unreadable or
        does not have the "<port> <secret>" shape.
    """
    path = Path(keys_file).expanduser()
    try:
        with open(path, "r", encoding="ascii", errors="replace") as f:
            first_line = f.readline()
    except OSError as e:
        logger.warning(f"Cannot read keys file {path}: {e}")
        return None

    fields = first_line.split()
    if len(fields) < 2 or not fields[0].isdigit():
        logger.warning(f"Malformed keys file {path}")
        return None
    return fields[1]


def check_auth(record: Record, keys_file: str | Path = DEFAULT_KEYS_FILE) -> bool:
    """
    Check an authentication record against the shared secret.

    The comparison is constant-time so the secret cannot be probed one
    byte at a time.
    """
    if record.cmd != "auth":
        logger.warning(f"Expected auth record, got cmd={record.cmd!r}")
        return False

    msg = record.get("msg")
    secret = read_shared_secret(keys_file)
    if msg is None or secret is None:
        return False
    return hmac.compare_digest(msg.encode(errors="surrogateescape"), secret.encode())
