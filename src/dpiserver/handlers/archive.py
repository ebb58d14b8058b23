"""
=============================================================================
ZIP DAEMON
=============================================================================

Browses archives without unpacking them to disk:

    zip:/home/user/book.epub                  →  listing of the members
    zip:/home/user/book.epub/OEBPS/ch1.html   →  that member's bytes

    ┌─────────────┐  split_archive_path   ┌───────────────────────────┐
    │ request URL │ ────────────────────► │ archive  +  member | None │
    └─────────────┘                       └───────────────────────────┘
                                             │ None          │ member
                                             ▼               ▼
                                      unzip -l "a"      unzip -p "a" "m"
                                      (listing page)    (streamed body)

The archiver is pluggable (unzip or 7z, see DaemonConfig.archiver).
Members are streamed without a Content-Length: the helper's output
length is not known up front.

=============================================================================
"""

import logging
from typing import Optional

from ..dpip.records import Record, RecordError
from ..resources.archive import (
    ListingParser,
    get_listing_parser,
    open_member,
    scan_archive_listing,
)
from ..resources.classify import SNIFF_SIZE, classify_content_type, type_from_extension
from ..resources.listing import Entry
from ..resources.paths import ResourceError, split_archive_path
from .base import DaemonHandler, Producer, StreamProducer, content_head
from .listing import ListingProducer


logger = logging.getLogger(__name__)


class MemberProducer(StreamProducer):
    """
    Streams one archive member from the extraction helper.

    The first bytes may already have been read for sniffing; they are
    sent before anything else.
    """

    def __init__(self, pipeline, head, prefix: bytes = b"", chunk_size: int = 16 * 1024):
        super().__init__(pipeline, head, chunk_size)
        self._prefix = prefix

    def next_chunk(self) -> bytes:
        if self._prefix:
            chunk, self._prefix = self._prefix, b""
            return chunk
        return super().next_chunk()


class ArchiveHandler(DaemonHandler):
    """Archive listings and member extraction."""

    name = "zip"

    def __init__(self, config):
        super().__init__(config)
        self.parser: ListingParser = get_listing_parser(config.archiver)

    def open(self, request: Record, legacy_style: bool) -> Producer:
        path = self.resource_path(request.get("url"))
        if not path.startswith("/"):
            raise RecordError(f"Not an absolute path: {path!r}")

        archive, member = split_archive_path(path)
        if member is None:
            return self.open_listing(archive, legacy_style)
        return self.extract(archive, member)

    def open_listing(self, archive: str, legacy_style: bool) -> ListingProducer:
        listing = scan_archive_listing(archive, self.parser)
        return ListingProducer(
            listing,
            scheme=self.name,
            parent_scheme="file",
            legacy=legacy_style,
            classify_entry=self.classify_entry,
        )

    def classify_entry(self, entry: Entry) -> Optional[str]:
        """Type of a member: by extension, else sniff its first bytes."""
        content_type = type_from_extension(entry.name)
        if content_type is not None:
            return content_type

        try:
            with open_member(self._archive_of(entry), entry.name, self.parser) as pipeline:
                sample = pipeline.read_up_to(SNIFF_SIZE)
        except ResourceError as e:
            logger.debug(f"Cannot sniff {entry.reference}: {e}")
            return None
        return classify_content_type(entry.name, sample)

    @staticmethod
    def _archive_of(entry: Entry) -> str:
        return entry.reference[:len(entry.reference) - len(entry.name) - 1]

    def extract(self, archive: str, member: str) -> MemberProducer:
        pipeline = open_member(archive, member, self.parser)
        logger.debug(f"Extracting {member} from {archive} (pids {pipeline.pids})")

        name = member[:-3] if len(member) > 3 and member[-3:].lower() == ".gz" else member
        prefix = b""
        if type_from_extension(name) is None:
            try:
                prefix = pipeline.read_up_to(SNIFF_SIZE)
            except OSError:
                pipeline.close()
                raise

        head = content_head(member, prefix or None)
        return MemberProducer(pipeline, head, prefix, self.config.chunk_size)
