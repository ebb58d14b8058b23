"""
Daemon backends, one per scheme.

    file     directory listings and file downloads       (multiplexed)
    zip      archive listings and member extraction      (multiplexed)
    man      manual pages formatted as HTML              (multiplexed)
    dls      local scripts                               (single-shot)
    gopher   gopher relay                                (single-shot)
"""

from .base import DaemonHandler, Producer, RawStreamProducer, StreamProducer, content_head
from .listing import ListingProducer
from .file import FileHandler
from .archive import ArchiveHandler
from .man import ManHandler
from .script import ScriptHandler
from .gopher import GopherHandler

HANDLERS = {
    FileHandler.name: FileHandler,
    ArchiveHandler.name: ArchiveHandler,
    ManHandler.name: ManHandler,
    ScriptHandler.name: ScriptHandler,
    GopherHandler.name: GopherHandler,
}

__all__ = [
    "DaemonHandler",
    "Producer",
    "RawStreamProducer",
    "StreamProducer",
    "content_head",
    "ListingProducer",
    "FileHandler",
    "ArchiveHandler",
    "ManHandler",
    "ScriptHandler",
    "GopherHandler",
    "HANDLERS",
]
