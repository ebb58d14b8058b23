"""
=============================================================================
RESOURCE IDENTIFIERS AND LOCAL PATHS
=============================================================================

Requests name a resource with a daemon-scheme URL:

    file:/home/user/notes.txt
    file://localhost/home/user/       (same as file:/home/user/)
    zip:/home/user/book.epub/OEBPS/ch1.html
    man:/usr/share/man/man1/ls.1.gz
    man:ls(1)

normalize_path() turns such a URL into a plain local path. Paths that
end up inside a shell command line (archive helpers) must also pass
split_archive_path(), which refuses every character the shell would
interpret inside double quotes and locates the archive file by walking
the path from its full length back to each '/':

    /home/user/book.epub/OEBPS/ch1.html      stat → ENOTDIR
    /home/user/book.epub/OEBPS               stat → ENOTDIR
    /home/user/book.epub                     stat → regular file ✓
                        └──────────────┘
                        member: OEBPS/ch1.html

=============================================================================
"""

import errno
import os
import stat
from typing import Optional, Tuple
from urllib.parse import unquote

from ..http.response import error_response
from ..http.status_codes import HTTPStatus, status_for_errno


# Characters that are still special to /bin/sh inside double quotes,
# plus '#', '<', '>', '|' and NUL which are never part of a sane resource name.
UNSAFE_PATH_CHARS = frozenset('"$`#<>|\\\0')


class ResourceError(OSError):
    """
    A request could not be resolved to a readable resource.

    Carries the OS error number that decides the response status:

        raise ResourceError(errno.ENOENT, "No such archive")
    """

    @property
    def status(self) -> HTTPStatus:
        return status_for_errno(self.errno)

    def to_response(self) -> bytes:
        """
        Render the complete error response sent to the browser.

        The body is the status line text followed by the system's
        description of the error number:

            404 Not Found
            No such file or directory
        """
        status = self.status
        detail = os.strerror(self.errno) if self.errno else (self.strerror or "")
        return error_response(status, f"{int(status)} {status.phrase}\n{detail}")


class PathValidationError(ResourceError):
    """A path contains characters that are unsafe in a shell command."""

    def __init__(self, message: str = "Invalid characters in path"):
        super().__init__(errno.ENOENT, message)


def normalize_path(scheme: str, url: Optional[str], default: Optional[str] = None) -> Optional[str]:
    """
    Turn a daemon URL into a local path.

    Steps:
        1. The scheme must match (case-insensitively), followed by ':'.
        2. A leading "//localhost/" is skipped.
        3. Packed leading slashes collapse into one.
        4. %XX octets are decoded.
        5. A trailing "#fragment" is dropped unless the full path exists.

    Args:
        scheme: The daemon name ("file", "zip", "man").
        url: The requested URL.
        default: Path to use when the URL has an empty path.

    Returns:
        The local path, or None if the URL does not belong to this scheme
        (or is empty and there is no default).

    Raises:
        PathValidationError: If the decoded path contains a NUL byte.
    """
    if not url or len(url) <= len(scheme) or url[len(scheme)] != ":":
        return None
    if url[:len(scheme)].lower() != scheme.lower():
        return None

    rest = url[len(scheme) + 1:]
    if rest[:12].lower() == "//localhost/":
        rest = rest[11:]
    while rest.startswith("//"):
        rest = rest[1:]

    path = unquote(rest, errors="surrogateescape")
    if "\0" in path:
        raise PathValidationError("NUL byte in path")
    if "#" in path and not os.path.lexists(path):
        path = path[:path.rindex("#")]

    if not path:
        return default
    return path


def is_toggle_request(scheme: str, url: Optional[str]) -> bool:
    """Check for the listing style toggle URL, dpi:/<scheme>/toggle."""
    if not url or url[:4].lower() != "dpi:":
        return False
    return url[4:] == f"/{scheme}/toggle"


def validate_shell_path(path: str) -> None:
    """
    Refuse paths that could break out of a double-quoted shell word.

    Raises:
        PathValidationError: If any unsafe character is present.
    """
    bad = UNSAFE_PATH_CHARS.intersection(path)
    if bad:
        raise PathValidationError(f"Invalid characters in path: {''.join(sorted(bad))}")


def split_archive_path(path: str) -> Tuple[str, Optional[str]]:
    """
    Split "<archive file>/<member>" into its two parts.

    The longest existing prefix of the path (cut at '/' boundaries) is
    the archive; it must not be a directory.

    Returns:
        (archive_path, member) where member is None when the path names
        the archive itself.

    Raises:
        PathValidationError: If the path has unsafe characters.
        ResourceError: ENOENT if no prefix exists or it is a directory.
    """
    validate_shell_path(path)

    end = len(path)
    while end > 0:
        prefix = path[:end]
        try:
            st = os.stat(prefix)
        except (OSError, ValueError):
            end = path.rfind("/", 0, end)
            continue

        if stat.S_ISDIR(st.st_mode):
            raise ResourceError(errno.ENOENT, f"Directory found instead of file: {prefix}")

        member = path[end + 1:]
        return prefix, (member or None)

    raise ResourceError(errno.ENOENT, f"No such file: {path}")
