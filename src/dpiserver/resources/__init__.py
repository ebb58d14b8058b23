"""
Local resources: path resolution, directory scanning, content types.

Archive listings live in resources.archive, which drives an external
archiver and is imported directly by the archive backend.
"""

from .paths import (
    PathValidationError,
    ResourceError,
    is_toggle_request,
    normalize_path,
    split_archive_path,
    validate_shell_path,
)
from .classify import (
    EXTENSION_TYPES,
    UNKNOWN_TYPE,
    classify_content_type,
    classify_file,
    sniff_content_type,
    type_from_extension,
)
from .listing import Entry, Listing, scan_directory, sort_entries

__all__ = [
    "PathValidationError",
    "ResourceError",
    "is_toggle_request",
    "normalize_path",
    "split_archive_path",
    "validate_shell_path",
    "EXTENSION_TYPES",
    "UNKNOWN_TYPE",
    "classify_content_type",
    "classify_file",
    "sniff_content_type",
    "type_from_extension",
    "Entry",
    "Listing",
    "scan_directory",
    "sort_entries",
]
