"""
=============================================================================
LISTING PAGE RENDERING
=============================================================================

A listing page is assembled from fixed pieces so it can be streamed one
row per write turn:

    page_header()     <!DOCTYPE ...><HTML><HEAD><BASE ...><TITLE>...
                      <BODY><H1>Directory listing of /home/user/</H1>
    parent_link()     <a href='file:/home/'>Parent directory</a>
    toggle_link()     &nbsp;&nbsp;<a href='dpi:/file/toggle'>%</a>
    table_header()    <table ...><tr>Filename Type Size Modified at
    entry_row() × N   <tr ...><td>><td><a href='/home/user/src'>src</a>...
    table_footer()    </table>
    page_footer()     </BODY></HTML>

Two styles exist. The table style above, and the plain (legacy) style
that puts everything in one <pre> block with dotted leaders:

    > <a href='/home/user/src'>src</a> .. .. .. .. .. .. Directory     4 KB    Jun 30 21:49

=============================================================================
"""

import html
import os
import time
from typing import Optional, Tuple
from urllib.parse import quote

from ..resources.classify import UNKNOWN_TYPE
from ..resources.listing import Entry


# Display names longer than this are cut to NAME-27 chars + "..."
MAX_NAME_LENGTH = 30

# Entries older than this (about six months) show a year instead of a time
SIX_MONTHS = 15811200

DOTS = ".. " * 16 + ".."

# Types that open through the archive daemon instead of as a download
ARCHIVE_TYPES = ("application/zip", "application/epub")


def escape_uri(text: str) -> str:
    """Percent-encode a path for use in a URL (slashes kept)."""
    return quote(os.fsencode(text), safe="/")


def escape_html(text: str) -> str:
    """Escape text for HTML content and single-quoted attributes."""
    return html.escape(text.encode("utf-8", errors="surrogateescape").decode("utf-8", errors="replace"))


def format_size(size: int) -> Tuple[int, str]:
    """
    Human-readable size, rounded to the nearest unit.

        >>> format_size(9999)
        (9999, 'bytes')
        >>> format_size(10240)
        (10, 'KB')
    """
    if size <= 9999:
        return size, "bytes"
    if size // 1024 <= 9999:
        return size // 1024 + (size % 1024 >= 512), "KB"
    return size // 1048576 + (size % 1048576 >= 524288), "MB"


def format_mtime(mtime: float, legacy: bool, now: Optional[float] = None) -> str:
    """Month, day and either the time of day or, for old entries, the year."""
    now = time.time() if now is None else now
    stamp = time.ctime(mtime)           # "Wed Jun 30 21:49:08 1993"
    month, day = stamp[4:7], stamp[8:10]
    old = now - mtime > SIX_MONTHS

    if legacy:
        return f" {month} {day}  {stamp[20:24]}" if old else f" {month} {day} {stamp[11:16]}"
    return f"<td>{month}&nbsp;{day}&nbsp;{stamp[20:24] if old else stamp[11:16]}"


def page_header(scheme: str, dirname: str, legacy: bool) -> str:
    hname = escape_html(dirname)
    page = (
        "<!DOCTYPE HTML PUBLIC '-//W3C//DTD HTML 4.01 Transitional//EN'>\n"
        "<HTML>\n<HEAD>\n"
        f" <BASE href='{scheme}:{escape_html(escape_uri(dirname))}'>\n"
        f" <TITLE>{scheme}:{hname}</TITLE>\n</HEAD>\n"
        f"<BODY><H1>Directory listing of {hname}</H1>\n"
    )
    if legacy:
        page += "<pre>\n"
    return page


def parent_link(scheme: str, dirname: str) -> str:
    """Link to the enclosing directory; empty at the root."""
    if dirname == "/":
        return ""
    parent = dirname[:-1]
    parent = parent[:parent.rfind("/") + 1]
    return f"<a href='{scheme}:{escape_html(escape_uri(parent))}'>Parent directory</a>"


def toggle_link(scheme: str) -> str:
    return f"&nbsp;&nbsp;<a href='dpi:/{scheme}/toggle'>%</a>\n"


def table_header(count: int, legacy: bool) -> str:
    if not count:
        return "<br><br>Directory is empty..."
    if legacy:
        return "\n\n"
    return (
        "<br><br>\n"
        "<table border=0 cellpadding=1 cellspacing=0"
        " bgcolor=#E0E0E0 width=100%>\n"
        "<tr align=center>\n"
        "<td>\n"
        "<td width=60%><b>Filename</b>"
        "<td><b>Type</b>"
        "<td><b>Size</b>"
        "<td><b>Modified&nbsp;at</b>\n"
    )


def describe_entry(entry: Entry, content_type: Optional[str]) -> str:
    """The Type column: Directory, Executable, a MIME type or unknown."""
    if entry.is_dir:
        return "Directory"
    if entry.is_executable:
        return "Executable"
    if not content_type or content_type == UNKNOWN_TYPE:
        return "unknown"
    return content_type


def entry_row(
    entry: Entry,
    index: int,
    content_type: Optional[str],
    legacy: bool,
    now: Optional[float] = None,
) -> str:
    """
    Render one listing row.

    Args:
        entry: The listed item.
        index: 1-based row number (odd rows get a shaded background).
        content_type: Classified type of the entry, if known.
        legacy: Plain <pre> style instead of the table.
        now: Reference time for the mtime column.
    """
    description = describe_entry(entry, content_type)
    prefix = "zip:" if description in ARCHIVE_TYPES else ""
    size, units = format_size(entry.size)
    marker = ">" if entry.is_dir else " "

    name = entry.name
    if len(name) > MAX_NAME_LENGTH:
        name = name[:MAX_NAME_LENGTH - 3] + "..."
    hname = escape_html(name)
    if hname.startswith("/"):
        hname = hname[1:]
    href = prefix + escape_html(escape_uri(entry.reference))

    if legacy:
        ndots = max(MAX_NAME_LENGTH - len(name), 0)
        row = (
            f"{marker}<a href='{href}'>{hname}</a>"
            f" {DOTS[len(DOTS) - ndots:]}"
            f" {description:<11}{size:4d} {units:<5}"
        )
    else:
        shade = "bgcolor=#dcdcdc" if index & 1 else ""
        row = (
            f"<tr align=center {shade}><td>{marker}<td align=left><a href='{href}'>{hname}</a>"
            f"<td>{description}<td>{size}&nbsp;{units}"
        )
    return row + format_mtime(entry.mtime, legacy, now) + "\n"


def table_footer(count: int, legacy: bool) -> str:
    return "</table>\n" if count and not legacy else ""


def page_footer(legacy: bool) -> str:
    return ("</pre>\n" if legacy else "") + "</BODY></HTML>\n"
