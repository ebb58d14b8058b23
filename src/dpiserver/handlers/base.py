"""
=============================================================================
DAEMON HANDLERS AND CONTENT PRODUCERS
=============================================================================

A handler turns one request into a Producer; the connection then pulls
the response out of the producer one piece per write turn:

    ┌──────────────┐  open(record)  ┌──────────────┐
    │ DaemonHandler│ ─────────────► │   Producer   │
    │  file / zip  │                │              │
    │  man / dls   │                │ http_head()  │ ← status + headers
    │  gopher      │                │ page_head()  │ ← listing top, <pre>
    └──────────────┘                │ next_chunk() │ ← body, b"" at end
                                    │ page_foot()  │ ← </table>, </pre>
                                    │ close()      │ ← files, helpers
                                    └──────────────┘

Resolution failures are raised from open() as ResourceError; the
connection answers them with an error page. Failures while streaming
are plain OSErrors and end the connection.

=============================================================================
"""

import errno
import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..config import DaemonConfig
from ..dpip.records import Record, RecordError
from ..http.response import ResponseHead
from ..resources.classify import UNKNOWN_TYPE, classify_content_type
from ..resources.paths import ResourceError, normalize_path


logger = logging.getLogger(__name__)


class Producer(ABC):
    """Produces one response, piece by piece."""

    @abstractmethod
    def http_head(self) -> bytes:
        """Status line and headers."""

    def page_head(self) -> bytes:
        """Body prologue written before the first chunk."""
        return b""

    @abstractmethod
    def next_chunk(self) -> bytes:
        """Next piece of body; b"" once there is no more."""

    def page_foot(self) -> bytes:
        """Body epilogue written after the last chunk."""
        return b""

    def close(self) -> None:
        """Release whatever the producer holds open."""


class StreamProducer(Producer):
    """
    Relays a readable source (file or helper pipeline) chunk by chunk.

    The source needs read(size) and close().
    """

    def __init__(self, source, head: ResponseHead, chunk_size: int = 16 * 1024):
        self.source = source
        self.head = head
        self.chunk_size = chunk_size
        self._closed = False

    def http_head(self) -> bytes:
        return self.head.to_bytes()

    def next_chunk(self) -> bytes:
        return self.source.read(self.chunk_size)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.source.close()
        except OSError as e:
            logger.warning(f"Error closing {self.source!r}: {e}")


class RawStreamProducer(StreamProducer):
    """
    Relays a source that writes its own HTTP head (local scripts).
    """

    def __init__(self, source, chunk_size: int = 16 * 1024):
        super().__init__(source, ResponseHead(), chunk_size)

    def http_head(self) -> bytes:
        return b""


def content_head(name: str, sample: Optional[bytes] = None) -> ResponseHead:
    """
    Build the 200 head for a byte stream named name.

    A ".gz" suffix (any case) means the stream is gzip-encoded and the
    type is decided by the rest of the name. A gzip stream of unknown
    type carries no Content-Type at all, so the browser sniffs the
    decoded data itself.
    """
    head = ResponseHead()
    gzipped = len(name) > 3 and name[-3:].lower() == ".gz"
    if gzipped:
        name = name[:-3]

    content_type = classify_content_type(name, sample) or UNKNOWN_TYPE
    if gzipped:
        head.set_header("Content-Encoding", "gzip")
    if not gzipped or content_type != UNKNOWN_TYPE:
        head.set_header("Content-Type", content_type)
    return head


class DaemonHandler(ABC):
    """
    One daemon's request semantics.

    Attributes:
        name: Scheme and daemon name ("file", "zip", ...).
        default_resource: Path used when a URL has an empty path.
        multiplexed: Serve many clients from one process (False for
            filter daemons that serve one connection on stdin/stdout).
    """

    name: str = ""
    default_resource: Optional[str] = None
    multiplexed: bool = True

    def __init__(self, config: DaemonConfig):
        self.config = config

    def resource_path(self, url: Optional[str]) -> str:
        """
        Normalize a request URL into a local path.

        Raises:
            RecordError: The URL does not belong to this daemon.
            ResourceError: ENOENT when the URL names nothing at all.
        """
        if not url or url[:len(self.name) + 1].lower() != f"{self.name}:":
            raise RecordError(f"URL {url!r} is not a {self.name}: URL")
        path = normalize_path(self.name, url, self.default_resource)
        if path is None:
            raise ResourceError(errno.ENOENT, f"Empty path in {url!r}")
        return path

    @abstractmethod
    def open(self, request: Record, legacy_style: bool) -> Producer:
        """
        Resolve a request into a producer.

        Args:
            request: The request record (cmd, url and extra attributes).
            legacy_style: Listing style snapshot for this connection.

        Raises:
            RecordError: For requests this daemon cannot interpret.
            ResourceError: For resources that cannot be served.
        """
