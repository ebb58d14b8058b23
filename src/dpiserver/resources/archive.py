"""
=============================================================================
ARCHIVE TABLES OF CONTENTS
=============================================================================

Archives are read through an external archiver. Two archivers are
supported, each with its own listing layout. The table proper sits
between two separator lines starting with "-----":

unzip -l:

    Archive:  book.epub
      Length      Date    Time    Name
    ---------  ---------- -----   ----
           20  2023-04-01 10:15   mimetype
         1187  2023-04-01 10:15   OEBPS/content.opf
    ---------                     -------
         1207                     2 files

7z l:

       Date      Time    Attr         Size   Compressed  Name
    ------------------- ----- ------------ ------------  ------------------------
    2023-04-01 10:15:00 ....A           20           20  mimetype
    2023-04-01 10:15:00 ....A         1187          512  OEBPS/content.opf
    ------------------- ----- ------------ ------------  ------------------------

The archiver is chosen by configuration; each one is a ListingParser
that knows its commands and how to read one table row.

=============================================================================
"""

import logging
import re
import stat
import time
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Tuple

from .listing import Entry, Listing, sort_entries
from .paths import validate_shell_path
from ..core.pipeline import ProcessPipeline


logger = logging.getLogger(__name__)

# Archive members are listed as plain readable files
MEMBER_MODE = stat.S_IFREG | 0o644

SEPARATOR = "-----"


class ListingParser(ABC):
    """
    Commands and table format of one archiver.

    Paths handed to the command builders must already have passed
    validate_shell_path(); they are re-checked here all the same.
    """

    name: str = ""

    @abstractmethod
    def list_command(self, archive: str) -> str:
        """Shell command that prints the archive's table of contents."""

    @abstractmethod
    def extract_command(self, archive: str, member: str) -> str:
        """Shell command that writes one member to stdout."""

    @abstractmethod
    def parse_line(self, line: str) -> Optional[Tuple[str, int, float]]:
        """Parse one table row into (member name, size, mtime), or None."""

    def parse(self, lines: Iterable[str]) -> List[Tuple[str, int, float]]:
        """Parse every row between the separator lines."""
        rows = []
        in_table = False
        for line in lines:
            if line.startswith(SEPARATOR):
                in_table = not in_table
                continue
            if not in_table:
                continue
            row = self.parse_line(line.rstrip("\r\n"))
            if row is None:
                logger.warning(f"Could not parse {self.name} listing line: {line.rstrip()!r}")
                continue
            rows.append(row)
        return rows

    @staticmethod
    def _quote(*paths: str) -> List[str]:
        for path in paths:
            validate_shell_path(path)
        return [f'"{path}"' for path in paths]


def _parse_time(text: str, formats: Iterable[str]) -> float:
    for fmt in formats:
        try:
            return time.mktime(time.strptime(text, fmt))
        except (ValueError, OverflowError):
            continue
    return 0.0


class UnzipListingParser(ListingParser):
    """Info-ZIP unzip: `size date time name`."""

    name = "unzip"

    # Older builds print MM-DD-YYYY, newer ones YYYY-MM-DD
    TIME_FORMATS = ("%m-%d-%Y %H:%M", "%Y-%m-%d %H:%M")

    def list_command(self, archive: str) -> str:
        (quoted,) = self._quote(archive)
        return f"unzip -l {quoted}"

    def extract_command(self, archive: str, member: str) -> str:
        quoted_archive, quoted_member = self._quote(archive, member.lstrip("/"))
        return f"unzip -p {quoted_archive} {quoted_member}"

    def parse_line(self, line: str) -> Optional[Tuple[str, int, float]]:
        fields = line.split(None, 3)
        if len(fields) < 4 or not fields[0].isdigit():
            return None
        size, date, clock, member = fields
        return member, int(size), _parse_time(f"{date} {clock}", self.TIME_FORMATS)


class SevenZipListingParser(ListingParser):
    """p7zip: `date time attr size [compressed] name`."""

    name = "7z"

    TIME_FORMATS = ("%Y-%m-%d %H:%M:%S",)

    # The compressed column is blank for all but the first file of a solid block
    _ROW = re.compile(
        r"^\s*(\d{4}-\d{2}-\d{2}) (\d{2}:\d{2}:\d{2}) (\S{5}) +(\d+) +(?:(\d+) +)?(.+)$"
    )

    def list_command(self, archive: str) -> str:
        (quoted,) = self._quote(archive)
        return f"7z l {quoted}"

    def extract_command(self, archive: str, member: str) -> str:
        quoted_archive, quoted_member = self._quote(archive, member.lstrip("/"))
        return f"7z x -so {quoted_archive} {quoted_member}"

    def parse_line(self, line: str) -> Optional[Tuple[str, int, float]]:
        match = self._ROW.match(line)
        if not match:
            return None
        date, clock, _attr, size, _compressed, member = match.groups()
        return member, int(size), _parse_time(f"{date} {clock}", self.TIME_FORMATS)


ARCHIVERS = {
    UnzipListingParser.name: UnzipListingParser,
    SevenZipListingParser.name: SevenZipListingParser,
}


def get_listing_parser(archiver: str) -> ListingParser:
    """
    Get the parser for a configured archiver name ("unzip" or "7z").

    Raises:
        ValueError: For unknown archivers.
    """
    try:
        return ARCHIVERS[archiver]()
    except KeyError:
        raise ValueError(f"Unknown archiver: {archiver!r}. Choose from {sorted(ARCHIVERS)}") from None


def build_archive_listing(archive: str, rows: Iterable[Tuple[str, int, float]]) -> Listing:
    """Turn parsed rows into a sorted Listing of the archive's members."""
    entries = [
        Entry(
            name=member,
            reference=f"{archive}/{member}",
            size=size,
            mode=MEMBER_MODE,
            mtime=mtime,
        )
        for member, size, mtime in rows
    ]
    return Listing(dirname=archive, entries=sort_entries(entries))


def scan_archive_listing(archive: str, parser: ListingParser) -> Listing:
    """
    List an archive's members with the configured archiver.

    Raises:
        PathValidationError: If the archive path is unsafe for the shell.
        HelperLaunchError: If the archiver cannot be started.
    """
    command = parser.list_command(archive)
    with ProcessPipeline.shell(command).start() as pipeline:
        rows = parser.parse(pipeline.lines())
    logger.debug(f"{parser.name}: {len(rows)} members in {archive}")
    return build_archive_listing(archive, rows)


def open_member(archive: str, member: str, parser: ListingParser) -> ProcessPipeline:
    """Start extracting one member; the caller reads and closes the pipeline."""
    return ProcessPipeline.shell(parser.extract_command(archive, member)).start()
