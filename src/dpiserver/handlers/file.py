"""
=============================================================================
FILE DAEMON
=============================================================================

Serves the local filesystem:

    file:/home/user/           →  HTML listing of the directory
    file:/home/user/notes.txt  →  the file itself, 16 KiB per write turn
    file:/tmp/log.txt.gz       →  Content-Encoding: gzip, type of log.txt

Listed zip and epub files link through the zip daemon, so clicking one
browses the archive instead of downloading it.

=============================================================================
"""

import errno
import logging
import os
import stat

from ..dpip.records import Record, RecordError
from ..http.response import http_date_from_timestamp
from ..resources.classify import classify_file, read_sample, type_from_extension
from ..resources.listing import Entry, scan_directory
from ..resources.paths import ResourceError
from .base import DaemonHandler, Producer, StreamProducer, content_head
from .listing import ListingProducer


logger = logging.getLogger(__name__)


def _strip_gz(path: str) -> str:
    return path[:-3] if len(path) > 3 and path[-3:].lower() == ".gz" else path


class FileHandler(DaemonHandler):
    """Directory listings and file downloads."""

    name = "file"
    default_resource = "/"

    def open(self, request: Record, legacy_style: bool) -> Producer:
        path = self.resource_path(request.get("url"))
        if not path.startswith("/"):
            raise RecordError(f"Not an absolute path: {path!r}")

        try:
            st = os.stat(path)
        except OSError as e:
            raise ResourceError(errno.ENOENT, f"Cannot stat {path}: {e.strerror}") from e
        except ValueError as e:
            raise ResourceError(errno.ENOENT, f"Cannot stat {path}: {e}") from e

        if stat.S_ISDIR(st.st_mode):
            return self.open_directory(path, legacy_style)
        return self.open_file(path, st)

    def open_directory(self, path: str, legacy_style: bool) -> ListingProducer:
        listing = scan_directory(path, hide_dotfiles=self.config.hide_dotfiles)
        logger.debug(f"Listing {listing.dirname}: {len(listing)} entries")
        return ListingProducer(
            listing,
            scheme=self.name,
            parent_scheme=self.name,
            legacy=legacy_style,
            classify_entry=self.classify_entry,
        )

    @staticmethod
    def classify_entry(entry: Entry):
        return classify_file(entry.reference)

    def open_file(self, path: str, st: os.stat_result) -> StreamProducer:
        try:
            source = open(path, "rb", buffering=0)
        except OSError as e:
            raise ResourceError(e.errno or errno.EACCES, f"Cannot open {path}: {e.strerror}") from e

        sample = None
        if type_from_extension(_strip_gz(path)) is None:
            sample = read_sample(path)

        head = content_head(path, sample)
        head.set_header("Content-Length", str(st.st_size))
        head.set_header("Last-Modified", http_date_from_timestamp(st.st_mtime))
        return StreamProducer(source, head, self.config.chunk_size)
