"""
=============================================================================
CONTENT TYPE CLASSIFICATION
=============================================================================

The browser only renders a handful of formats; classification checks,
in order:

    1. EXTENSION TABLE    notes.txt → text/plain, book.epub → application/epub
    2. DATA SNIFFING      the first 256 bytes of the content
    3. TEXT vs BINARY     how many bytes fall above 127

Sniffing checks, in order:

    ┌──────────────────────────────┬─────────────────────────────────────┐
    │ <html <head <title           │                                     │
    │ <!doctype html               │ text/html (after leading blanks,    │
    │ <!-- HTML listing            │ case-insensitive)                   │
    ├──────────────────────────────┼─────────────────────────────────────┤
    │ GIF8                         │ image/gif                           │
    │ \\x89PNG                      │ image/png                           │
    │ \\xff\\xd8                     │ image/jpeg                          │
    │ PK\\x03\\x04 PK\\x05\\x06 ...    │ application/zip                     │
    ├──────────────────────────────┼─────────────────────────────────────┤
    │ anything else                │ text/plain or                       │
    │                              │ application/octet-stream            │
    └──────────────────────────────┴─────────────────────────────────────┘

=============================================================================
"""

import logging
import os
from typing import Optional


logger = logging.getLogger(__name__)


EXTENSION_TYPES = {
    # Images
    "gif": "image/gif",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",

    # Markup
    "html": "text/html",
    "htm": "text/html",
    "shtml": "text/html",
    "xhtml": "text/html",
    "xml": "text/xml",
    "ncx": "text/xml",             # EPUB table of contents
    "opf": "text/xml",             # EPUB package document
    "rss": "application/rss+xml",

    # Documents and archives
    "pdf": "application/pdf",
    "zip": "application/zip",
    "epub": "application/epub",

    # Plain-text formats
    "gmi": "text/gemini",
    "gophermap": "text/gopher",
    "md": "text/markdown",
    "js": "text/javascript",
    "css": "text/css",
    "txt": "text/plain",
}

UNKNOWN_TYPE = "application/octet-stream"

# How many leading bytes the sniffer looks at
SNIFF_SIZE = 256

_HTML_PREFIXES = (b"<html", b"<head", b"<title", b"<!doctype html", b"<!-- html listing")

_MAGIC_NUMBERS = (
    (b"GIF8", "image/gif"),
    (b"\x89PNG", "image/png"),
    (b"\xff\xd8", "image/jpeg"),
    (b"PK\x03\x04", "application/zip"),
    (b"PK\x05\x06", "application/zip"),
    (b"PK\x07\x08", "application/zip"),
)


def type_from_extension(name: str) -> Optional[str]:
    """
    Look a name's extension up in the table (case-insensitive).

        >>> type_from_extension("/tmp/Photo.JPG")
        'image/jpeg'
        >>> type_from_extension("README") is None
        True
    """
    basename = name.rsplit("/", 1)[-1]
    if "." not in basename:
        return None
    extension = basename.rsplit(".", 1)[1].lower()
    return EXTENSION_TYPES.get(extension)


def sniff_content_type(sample: bytes) -> str:
    """
    Guess a content type from the leading bytes of some data.

    Always returns a type: text/plain or application/octet-stream when
    nothing more specific matches.
    """
    sample = sample[:SNIFF_SIZE]

    lowered = sample.lstrip(b" \t\r\n\f\v").lower()
    if lowered.startswith(_HTML_PREFIXES):
        return "text/html"

    for magic, content_type in _MAGIC_NUMBERS:
        if sample.startswith(magic):
            return content_type

    # ─────────────────────────────────────────────────────────────────────
    # TEXT OR BINARY?
    # ─────────────────────────────────────────────────────────────────────
    # A full sample tolerates a few high bytes (UTF-8 accents); a short
    # sample is the whole content and must be pure ASCII to count as text.
    high = sum(1 for byte in sample if byte > 127)
    if len(sample) == SNIFF_SIZE:
        return UNKNOWN_TYPE if high > 10 else "text/plain"
    return UNKNOWN_TYPE if high > 0 else "text/plain"


def classify_content_type(name: str, sample: Optional[bytes] = None) -> Optional[str]:
    """
    Classify by extension, falling back to sniffing a sample.

    Args:
        name: Resource name used for the extension lookup.
        sample: Leading content bytes, or None when none are usable.

    Returns:
        The content type, or None if neither step applies.
    """
    content_type = type_from_extension(name)
    if content_type is None and sample:
        content_type = sniff_content_type(sample)
    return content_type


def read_sample(path: str | os.PathLike) -> Optional[bytes]:
    """
    Read a file's sniffable sample.

    A sample is usable only if it fills SNIFF_SIZE bytes or covers the
    whole (non-empty) file.
    """
    try:
        with open(path, "rb") as f:
            sample = f.read(SNIFF_SIZE)
            size = os.fstat(f.fileno()).st_size
    except OSError as e:
        logger.debug(f"Cannot sample {path}: {e}")
        return None

    if len(sample) == SNIFF_SIZE or (sample and len(sample) == size):
        return sample
    return None


def classify_file(path: str) -> Optional[str]:
    """Classify a local file by extension, then by its contents."""
    content_type = type_from_extension(path)
    if content_type is None:
        sample = read_sample(path)
        if sample is not None:
            content_type = sniff_content_type(sample)
    return content_type
