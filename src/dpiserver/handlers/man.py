"""
=============================================================================
MAN DAEMON
=============================================================================

Formats manual pages as HTML:

    man:ls                            →  man -- ls | col -b
    man:printf(3)                     →  man -- 3 printf | col -b
    man:/usr/share/man/man1/ls.1.gz   →  man -- /usr/share/man/man1/ls.1.gz | col -b

Both stages run from literal argument vectors; the shell is never
involved. The plain text output is wrapped in <pre> with two touches:

    NAME                              <strong>NAME
                                      </strong>
    SEE ALSO                          <strong>SEE ALSO
                                      </strong>
           ls(1), stat(2)                    <a href="man:ls(1)">ls(1)</a>, <a href="man:stat(2)">stat(2)</a>

=============================================================================
"""

import errno
import logging
import os
import re
import stat
import subprocess
from typing import Iterator, List, Optional

from ..core.pipeline import ProcessPipeline
from ..dpip.records import Record
from ..http.response import ResponseHead
from ..resources.paths import ResourceError, validate_shell_path
from .base import DaemonHandler, Producer
from .render import escape_html


logger = logging.getLogger(__name__)


PAGE_NAME = re.compile(r"^([A-Za-z0-9_][A-Za-z0-9_.+:@-]*)(?:\(([A-Za-z0-9]+)\))?$")

SEE_ALSO = "SEE ALSO"


def man_command(page: str) -> List[str]:
    """
    Build the man argument vector for a page name or page file.

    Raises:
        ResourceError: ENOENT for names that are neither a valid page
            name nor an existing page file.
    """
    if "/" in page:
        validate_shell_path(page)
        try:
            st = os.stat(page)
        except (OSError, ValueError) as e:
            raise ResourceError(errno.ENOENT, f"No such manual page file: {page}") from e
        if stat.S_ISDIR(st.st_mode):
            raise ResourceError(errno.ENOENT, f"Directory found instead of file: {page}")
        return ["man", "--", page]

    match = PAGE_NAME.match(page)
    if not match:
        raise ResourceError(errno.ENOENT, f"Invalid manual page name: {page!r}")
    name, section = match.groups()
    if section:
        return ["man", "--", section, name]
    return ["man", "--", name]


def render_see_also(line: str) -> str:
    """Turn each comma-separated reference on a line into a man: link."""
    stripped = line.lstrip(" ")
    out = [line[:len(line) - len(stripped)]]

    pos, end = 0, len(stripped)
    while pos < end and stripped[pos] != "\n":
        stop = pos
        while stop < end and stripped[stop] not in ",\n":
            stop += 1
        ref = escape_html(stripped[pos:stop])
        out.append(f'<a href="man:{ref}">{ref}</a>')

        pos = stop
        while stop < end and stripped[stop] in ", ":
            stop += 1
        out.append(stripped[pos:stop])
        pos = stop

    out.append(stripped[pos:])
    return "".join(out)


def _starts_upper(line: str) -> bool:
    return len(line) >= 2 and line[0].isupper() and line[1].isupper()


class ManPageProducer(Producer):
    """Renders man output line by line inside <pre>."""

    def __init__(self, pipeline: ProcessPipeline):
        self.pipeline = pipeline
        self._lines: Iterator[str] = pipeline.lines()
        self._in_see_also = False

    def http_head(self) -> bytes:
        return ResponseHead().set_header("Content-Type", "text/html").to_bytes()

    def page_head(self) -> bytes:
        return b"<pre>"

    def next_chunk(self) -> bytes:
        line: Optional[str] = next(self._lines, None)
        if line is None:
            return b""
        return self.render_line(line).encode("utf-8")

    def render_line(self, line: str) -> str:
        strong = _starts_upper(line)

        if self._in_see_also:
            text = render_see_also(line)
        else:
            text = escape_html(line)
        if strong:
            text = f"<strong>{text}</strong>"

        if line.startswith(SEE_ALSO):
            self._in_see_also = True
        else:
            self._in_see_also = False
        return text

    def page_foot(self) -> bytes:
        return b"</pre>"

    def close(self) -> None:
        self.pipeline.close()


class ManHandler(DaemonHandler):
    """Manual pages through man and col."""

    name = "man"
    default_resource = "man"

    def open(self, request: Record, legacy_style: bool) -> Producer:
        page = self.resource_path(request.get("url"))
        argv = man_command(page)
        logger.debug(f"Formatting manual page with {argv}")

        pipeline = ProcessPipeline([argv, ["col", "-b"]], stderr=subprocess.DEVNULL).start()
        return ManPageProducer(pipeline)
