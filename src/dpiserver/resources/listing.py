"""
=============================================================================
DIRECTORY LISTINGS
=============================================================================

A Listing is an ordered snapshot of a directory (or of an archive's
table of contents). Its order is a strict total order:

    1. directories before everything else
    2. then by name, compared code point by code point (like strcmp)
    3. then by reference, so even equal display names never tie

Scanning the same unchanged directory twice therefore gives two listings
that compare equal element by element, which keeps reloads stable.

Hidden names are never listed:

    .            ..           current / parent
    .profile     .git         dotfiles
    notes.txt~                editor backups
    #notes.txt#               editor autosaves

=============================================================================
"""

import errno
import logging
import os
import stat
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List

from .paths import ResourceError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Entry:
    """
    One listed item.

    Attributes:
        name: Display name (file name, or member path inside an archive).
        reference: Path used to request the item again.
        size: Size in bytes.
        mode: st_mode bits (file type and permissions).
        mtime: Modification time (POSIX timestamp).
    """

    name: str
    reference: str
    size: int
    mode: int
    mtime: float

    @property
    def is_dir(self) -> bool:
        return stat.S_ISDIR(self.mode)

    @property
    def is_executable(self) -> bool:
        return not self.is_dir and bool(self.mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH))

    @property
    def sort_key(self):
        return (not self.is_dir, self.name, self.reference)


@dataclass
class Listing:
    """A scanned directory: its name (always ending in '/') and entries."""

    dirname: str
    entries: List[Entry] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self.entries)


def sort_entries(entries: Iterable[Entry]) -> List[Entry]:
    """Sort entries directories-first, then by name."""
    return sorted(entries, key=lambda entry: entry.sort_key)


def is_hidden(name: str) -> bool:
    """Check if a directory entry should be left out of listings."""
    return name.startswith((".", "#")) or name.endswith("~")


def scan_directory(path: str, hide_dotfiles: bool = True) -> Listing:
    """
    Scan a local directory.

    Every surviving entry is stat()ed following symlinks; entries whose
    stat fails (dangling links, races with deletion) are skipped.

    Args:
        path: Directory to scan.
        hide_dotfiles: Leave out hidden names (see is_hidden).

    Raises:
        ResourceError: If the directory cannot be opened (EACCES when
            permission is denied, otherwise the underlying errno).
    """
    dirname = path if path.endswith("/") else path + "/"

    try:
        names = os.listdir(dirname)
    except OSError as e:
        raise ResourceError(e.errno or errno.EACCES, f"Cannot open directory {dirname}: {e.strerror}") from e

    entries = []
    for name in names:
        if name in (".", ".."):
            continue
        if hide_dotfiles and is_hidden(name):
            continue

        full_path = dirname + name
        try:
            st = os.stat(full_path)
        except OSError as e:
            logger.debug(f"Skipping {full_path}: {e}")
            continue

        entries.append(Entry(
            name=name,
            reference=full_path,
            size=st.st_size,
            mode=st.st_mode,
            mtime=st.st_mtime,
        ))

    return Listing(dirname=dirname, entries=sort_entries(entries))
