"""
Streams a Listing as an HTML page, one row per chunk.
"""

import time
from typing import Callable, Optional

from ..http.response import ResponseHead
from ..resources.listing import Entry, Listing
from . import render
from .base import Producer


# Decides the Type column for a non-directory, non-executable entry
EntryClassifier = Callable[[Entry], Optional[str]]


class ListingProducer(Producer):
    """
    Renders a directory or archive listing.

    Args:
        listing: The scanned listing.
        scheme: Scheme of the page itself (BASE, TITLE and toggle link).
        parent_scheme: Scheme of the "Parent directory" link.
        legacy: Plain <pre> style instead of the table.
        classify_entry: Content type lookup for plain entries.
    """

    def __init__(
        self,
        listing: Listing,
        scheme: str,
        parent_scheme: str,
        legacy: bool,
        classify_entry: EntryClassifier,
    ):
        self.listing = listing
        self.scheme = scheme
        self.parent_scheme = parent_scheme
        self.legacy = legacy
        self.classify_entry = classify_entry
        self._rows = iter(listing.entries)
        self._index = 0
        self._now = time.time()

    def http_head(self) -> bytes:
        return ResponseHead().set_header("Content-Type", "text/html").to_bytes()

    def page_head(self) -> bytes:
        dirname = self.listing.dirname
        page = (
            render.page_header(self.scheme, dirname, self.legacy)
            + render.parent_link(self.parent_scheme, dirname)
            + render.toggle_link(self.scheme)
            + render.table_header(len(self.listing), self.legacy)
        )
        return page.encode("utf-8")

    def next_chunk(self) -> bytes:
        entry = next(self._rows, None)
        if entry is None:
            return b""
        self._index += 1

        content_type = None
        if not entry.is_dir and not entry.is_executable:
            content_type = self.classify_entry(entry)
        row = render.entry_row(entry, self._index, content_type, self.legacy, self._now)
        return row.encode("utf-8")

    def page_foot(self) -> bytes:
        count = len(self.listing)
        return (render.table_footer(count, self.legacy) + render.page_footer(self.legacy)).encode("utf-8")
