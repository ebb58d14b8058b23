"""
=============================================================================
CONNECTION STATE MACHINE
=============================================================================

One Connection is one peer being served. It never blocks: every call
either makes progress or returns unchanged, and the reactor calls it
again when the descriptor is ready.

=============================================================================
STATES
=============================================================================

    Reading ──(auth ok)──► Reading ──(request)──┬──► Start
       │                                         │      │ begin record
       │ (auth fails, bad record)                │      ▼
       ▼                                         │   ProtocolHeaderSent
     error                                       │      │ HTTP head
                                                 │      ▼
                   (unresolvable resource) ◄─────┘   HttpHeaderSent
                            │                           │ page head
                            ▼                           ▼
                           Err                       BodyStreaming ◄─┐
                            │ begin record +            │ one chunk ─┘
                            │ error response            │ (b"" = end)
                            │                           ▼
                            │                        Content
                            │                           │ page foot
                            ▼                           ▼
                          Done ◄────────────────────────┘
                            │ output buffer drained
                            ▼
                         finished

Each state is a small dataclass that carries only what that state needs
(the producer, or the error to report). Two requests short-circuit the
table: "DpiBye" asks the whole daemon to stop, and dpi:/<name>/toggle
flips the listing style and answers with a single reload_request record.

=============================================================================
BACKPRESSURE
=============================================================================

Writes go through an output buffer. If the peer is slow, send() takes
only part of it; the rest stays buffered and the next write turn only
flushes. A new chunk is produced only once the buffer is empty, so a
slow reader never makes the daemon hold more than one chunk for it.

=============================================================================
"""

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Union

from ..config import DaemonConfig, RuntimeSettings
from ..dpip.auth import check_auth
from ..dpip.records import Record, RecordError, RecordReader, build_record
from ..resources.paths import ResourceError, is_toggle_request
from .transport import Transport

if TYPE_CHECKING:
    from ..handlers.base import DaemonHandler, Producer


logger = logging.getLogger(__name__)


# =============================================================================
# STATES
# =============================================================================

@dataclass
class Reading:
    """Waiting for records; authenticated once the auth record checked out."""
    authenticated: bool = False


@dataclass
class Start:
    """Request resolved; nothing written yet."""
    producer: "Producer"


@dataclass
class ProtocolHeaderSent:
    """Begin record written."""
    producer: "Producer"


@dataclass
class HttpHeaderSent:
    """HTTP status line and headers written."""
    producer: "Producer"


@dataclass
class BodyStreaming:
    """Page head written; body chunks flowing."""
    producer: "Producer"


@dataclass
class Content:
    """Body exhausted; page foot still to write."""
    producer: "Producer"


@dataclass
class Err:
    """Resolution failed; an error page is still to write."""
    error: ResourceError


@dataclass
class Done:
    """Everything queued; finished once the output buffer drains."""


State = Union[Reading, Start, ProtocolHeaderSent, HttpHeaderSent, BodyStreaming, Content, Err, Done]


class Connection:
    """
    A served peer: transport, request, producer and state.

    Attributes:
        id: Short identifier for log lines.
        state: Current state (one of the dataclasses above).
        read_wanted: The reactor should watch for read readiness.
        write_wanted: The reactor should watch for write readiness.
        done: Completed normally.
        error: Ended abnormally (no further output).
        auth_failed: The peer's auth record was rejected.
        url: The requested URL, echoed in the begin record.
        legacy_style: Listing style snapshot taken at dispatch.
    """

    def __init__(
        self,
        transport: Transport,
        handler: "DaemonHandler",
        settings: RuntimeSettings,
        config: DaemonConfig,
    ):
        self.id = str(uuid.uuid4())[:8]
        self.transport = transport
        self.handler = handler
        self.settings = settings
        self.config = config

        self.state: State = Reading(authenticated=not config.require_auth)
        self.read_wanted = True
        self.write_wanted = False
        self.done = False
        self.error = False
        self.auth_failed = False

        self.url: Optional[str] = None
        self.legacy_style = settings.legacy_style

        self._reader = RecordReader(config.max_record_size)
        self._outbox = bytearray()
        self._producer: Optional["Producer"] = None
        self._closed = False

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def finished(self) -> bool:
        """Ready for teardown."""
        return self.done or self.error

    @property
    def is_idle(self) -> bool:
        """No request dispatched yet."""
        return isinstance(self.state, Reading)

    @property
    def pending_output(self) -> int:
        """Bytes queued but not yet accepted by the transport."""
        return len(self._outbox)

    # =========================================================================
    # READING
    # =========================================================================

    def on_readable(self) -> None:
        """Receive what is available and act on every complete record."""
        try:
            data = self.transport.recv(self.config.buffer_size)
        except BlockingIOError:
            return
        except OSError as e:
            self._fail(f"Receive failed: {e}")
            return

        if not data:
            logger.debug(f"[{self.id}] Peer closed the connection")
            self._finish()
            return

        try:
            records = self._reader.feed(data)
        except RecordError as e:
            self._fail(f"Protocol error: {e}")
            return

        for record in records:
            if self.finished or not isinstance(self.state, Reading):
                break
            self._handle_record(record)

    def _handle_record(self, record: Record) -> None:
        # ─────────────────────────────────────────────────────────────────
        # AUTHENTICATION: the first record on every connection
        # ─────────────────────────────────────────────────────────────────
        if not self.state.authenticated:
            if check_auth(record, self.config.keys_path):
                logger.debug(f"[{self.id}] Authenticated")
                self.state = Reading(authenticated=True)
            else:
                self.auth_failed = True
                self._fail("Authentication failed")
            return

        # ─────────────────────────────────────────────────────────────────
        # HOUSEKEEPING COMMANDS
        # ─────────────────────────────────────────────────────────────────
        if record.cmd == "DpiBye":
            logger.info(f"[{self.id}] Got DpiBye, shutting down after in-flight requests")
            self.settings.request_shutdown()
            self._finish()
            return

        url = record.get("url")
        if is_toggle_request(self.handler.name, url):
            legacy = self.settings.toggle_style()
            logger.info(f"[{self.id}] Listing style is now {'plain' if legacy else 'table'}")
            self._queue(build_record(cmd="reload_request"))
            self._enter(Done())
            return

        # ─────────────────────────────────────────────────────────────────
        # RESOURCE REQUEST
        # ─────────────────────────────────────────────────────────────────
        self.url = url
        self.legacy_style = self.settings.legacy_style
        logger.info(f"[{self.id}] {record.cmd} {url}")

        try:
            producer = self.handler.open(record, self.legacy_style)
        except RecordError as e:
            self._fail(f"Bad request: {e}")
            return
        except ResourceError as e:
            logger.info(f"[{self.id}] {int(e.status)} for {url}: {e.strerror}")
            self._enter(Err(e))
            return
        except OSError as e:
            logger.info(f"[{self.id}] Error opening {url}: {e}")
            self._enter(Err(ResourceError(e.errno, e.strerror)))
            return
        except Exception as e:
            logger.exception(f"[{self.id}] Handler error for {url}: {e}")
            self._fail(f"Handler error: {e}")
            return

        self._producer = producer
        self._enter(Start(producer))

    # =========================================================================
    # WRITING
    # =========================================================================

    def on_writable(self) -> None:
        """Flush pending output, or produce and send the next piece."""
        if not self._flush():
            return

        if isinstance(self.state, Done):
            self._complete()
            return

        try:
            self._advance()
        except OSError as e:
            self._fail(f"Read error while producing response: {e}")
            return
        except Exception as e:
            logger.exception(f"[{self.id}] Producer error: {e}")
            self._fail(f"Producer error: {e}")
            return

        if self._flush() and isinstance(self.state, Done):
            self._complete()

    def _advance(self) -> None:
        """Queue the output of the current state and move to the next."""
        state = self.state

        if isinstance(state, Start):
            self._queue(build_record(cmd="start_send_page", url=self.url or ""))
            self.state = ProtocolHeaderSent(state.producer)

        elif isinstance(state, ProtocolHeaderSent):
            self._queue(state.producer.http_head())
            self.state = HttpHeaderSent(state.producer)

        elif isinstance(state, HttpHeaderSent):
            self._queue(state.producer.page_head())
            self.state = BodyStreaming(state.producer)

        elif isinstance(state, BodyStreaming):
            chunk = state.producer.next_chunk()
            if chunk:
                self._queue(chunk)
            else:
                self.state = Content(state.producer)

        elif isinstance(state, Content):
            self._queue(state.producer.page_foot())
            self.state = Done()

        elif isinstance(state, Err):
            self._queue(build_record(cmd="start_send_page", url=self.url or ""))
            self._queue(state.error.to_response())
            self.state = Done()

    def _queue(self, data: bytes) -> None:
        self._outbox += data

    def _flush(self) -> bool:
        """
        Try to send the output buffer.

        Returns:
            True if the buffer is now empty.
        """
        if not self.pending_output:
            return True
        try:
            sent = self.transport.send(self._outbox)
        except BlockingIOError:
            return False
        except OSError as e:
            self._fail(f"Send failed: {e}")
            return False

        del self._outbox[:sent]
        return not self.pending_output

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def _enter(self, state: State) -> None:
        """Switch from reading to writing."""
        self.state = state
        self.read_wanted = False
        self.write_wanted = True

    def _finish(self) -> None:
        """End normally, draining any queued output first."""
        if self.pending_output:
            self._enter(Done())
        else:
            self.state = Done()
            self._complete()

    def _complete(self) -> None:
        self.done = True
        self.read_wanted = False
        self.write_wanted = False
        logger.debug(f"[{self.id}] Done")

    def _fail(self, reason: str) -> None:
        logger.warning(f"[{self.id}] {reason}")
        self.error = True
        self.read_wanted = False
        self.write_wanted = False

    def abandon(self) -> None:
        """Give up on a connection that never sent a request."""
        self.state = Done()
        self._complete()

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self) -> None:
        """
        Release the producer (files, helper processes) and the transport.

        Safe to call more than once; resources are released exactly once.
        """
        if self._closed:
            return
        self._closed = True

        if self._producer is not None:
            try:
                self._producer.close()
            except OSError as e:
                logger.warning(f"[{self.id}] Error releasing producer: {e}")
            self._producer = None

        self.transport.close()
        logger.debug(f"[{self.id}] Connection closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
