"""
=============================================================================
SINGLE-THREADED I/O REACTOR
=============================================================================

The reactor is the whole concurrency model of a daemon: one thread, one
selector, many connections.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                            One turn                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. Recompute interest from each connection's flags                │
    │         read_wanted  → EVENT_READ                                    │
    │         write_wanted → EVENT_WRITE                                   │
    │                                                                      │
    │   2. select(timeout)      wait for readiness (or the timeout,       │
    │                           which only serves to notice shutdown)      │
    │                                                                      │
    │   3. Listener ready?      accept until EAGAIN, register each new    │
    │                           non-blocking connection with read_wanted   │
    │                                                                      │
    │   4. Connections ready?   step each one once, in registry order     │
    │                                                                      │
    │   5. Tear down finished connections (unregister, close producer,    │
    │      close transport) and drop them from the registry               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Because every step is non-blocking and a connection writes at most one
chunk per turn, a large transfer never starves the other peers.

=============================================================================
SHUTDOWN
=============================================================================

A DpiBye record or SIGINT/SIGTERM sets the shutdown flag. The reactor
then closes the listener, abandons connections that have not sent a
request yet, lets dispatched ones finish, and returns exit code 0 once
the registry is empty. A failure of select() or accept() itself is
fatal and returns exit code 1.

=============================================================================
SINGLE-SHOT MODE
=============================================================================

Filter daemons (dls, gopher) are started with their one peer on
stdin/stdout. serve_single() runs the very same loop for that one
connection, without a listener.

=============================================================================
"""

import logging
import os
import selectors
import signal
import socket
import threading
from typing import Dict, Optional, Tuple

from ..config import DaemonConfig, RuntimeSettings
from .connection import Connection
from .transport import SocketTransport, Transport


logger = logging.getLogger(__name__)


class FatalReactorError(Exception):
    """The listener or selector failed; the daemon cannot go on."""


class Reactor:
    """
    Multiplexes connections for one daemon handler.

    Usage:
        reactor = Reactor(config, FileHandler(config))
        sys.exit(reactor.run())
    """

    def __init__(self, config: DaemonConfig, handler, settings: Optional[RuntimeSettings] = None):
        self.config = config
        self.handler = handler
        self.settings = settings or RuntimeSettings(legacy_style=config.legacy_style)

        self._selector = selectors.DefaultSelector()
        self._listener: Optional[socket.socket] = None
        self._connections: Dict[str, Connection] = {}

        # fd → event mask currently registered for connections
        self._registered: Dict[int, int] = {}

        self._original_handlers: dict = {}

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def connections(self) -> Dict[str, Connection]:
        """Live connections by id."""
        return self._connections

    @property
    def address(self):
        """Address the listener is bound to."""
        return self._listener.getsockname() if self._listener else None

    # =========================================================================
    # LISTENER
    # =========================================================================

    def listen(self) -> socket.socket:
        """
        Set up the listening socket.

        Priority: socket_path, then port, then the inherited listen_fd.
        """
        if self.config.socket_path:
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            try:
                os.unlink(self.config.socket_path)
            except FileNotFoundError:
                pass
            sock.bind(self.config.socket_path)
            sock.listen(self.config.backlog)
            logger.info(f"{self.handler.name} listening on {self.config.socket_path}")

        elif self.config.port is not None:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            try:
                sock.bind((self.config.host, self.config.port))
            except OSError as e:
                logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
                sock.close()
                raise
            sock.listen(self.config.backlog)
            logger.info(f"{self.handler.name} listening on {sock.getsockname()}")

        else:
            sock = socket.socket(fileno=self.config.listen_fd)
            logger.info(f"{self.handler.name} accepting on inherited fd {self.config.listen_fd}")

        self.adopt_listener(sock)
        return sock

    def adopt_listener(self, sock: socket.socket) -> None:
        """Use an already listening socket."""
        sock.setblocking(False)
        self._listener = sock
        self._selector.register(sock, selectors.EVENT_READ, data=None)

    def _close_listener(self) -> None:
        if self._listener is None:
            return
        try:
            self._selector.unregister(self._listener)
        except (KeyError, ValueError):
            pass
        try:
            self._listener.close()
        except OSError:
            pass
        self._listener = None
        logger.info("Listener closed, no longer accepting connections")

    def _accept(self) -> None:
        """Accept every pending connection."""
        while True:
            try:
                client_socket, client_address = self._listener.accept()
            except BlockingIOError:
                return
            except (ConnectionAbortedError, InterruptedError):
                continue
            except OSError as e:
                logger.error(f"Accept error: {e}")
                raise FatalReactorError(str(e)) from e

            conn = self.add_connection(SocketTransport(client_socket))
            logger.debug(f"[{conn.id}] Accepted connection from {client_address or 'local peer'}")

    def add_connection(self, transport: Transport) -> Connection:
        """Register a new connection for a transport."""
        conn = Connection(transport, self.handler, self.settings, self.config)
        self._connections[conn.id] = conn
        return conn

    # =========================================================================
    # THE LOOP
    # =========================================================================

    def poll(self, timeout: Optional[float] = None) -> None:
        """
        Run one reactor turn.

        Raises:
            FatalReactorError: If select() or accept() fails.
        """
        if self.settings.shutdown_requested:
            self._begin_shutdown()

        self._update_interest()

        try:
            events = self._selector.select(timeout)
        except OSError as e:
            logger.error(f"select() failed: {e}")
            raise FatalReactorError(str(e)) from e

        ready: Dict[Connection, int] = {}
        for key, mask in events:
            if key.data is None:
                self._accept()
            else:
                ready[key.data] = ready.get(key.data, 0) | mask

        # ─────────────────────────────────────────────────────────────────
        # STEP READY CONNECTIONS (registry order)
        # ─────────────────────────────────────────────────────────────────
        for conn in list(self._connections.values()):
            mask = ready.get(conn)
            if not mask:
                continue
            if mask & selectors.EVENT_READ and conn.read_wanted and not conn.finished:
                conn.on_readable()
            if mask & selectors.EVENT_WRITE and conn.write_wanted and not conn.finished:
                conn.on_writable()

        self._reap()

    def run(self) -> int:
        """
        Serve until shutdown.

        Returns:
            Process exit code: 0 after a clean shutdown, 1 after a fatal
            multiplexing error.
        """
        if self._listener is None:
            self.listen()
        self._setup_signals()

        exit_code = 0
        try:
            while not (self.settings.shutdown_requested and not self._connections):
                self.poll(self.config.select_timeout)
        except FatalReactorError:
            exit_code = 1
        finally:
            self._cleanup()

        logger.info(f"{self.handler.name} exiting with code {exit_code}")
        return exit_code

    def serve_single(self, transport: Transport) -> int:
        """
        Serve exactly one connection (filter daemons).

        Returns:
            1 if the peer failed authentication or the loop failed,
            otherwise 0.
        """
        conn = self.add_connection(transport)
        self._setup_signals()

        exit_code = 0
        try:
            while self._connections:
                self.poll(self.config.select_timeout)
        except FatalReactorError:
            exit_code = 1
        finally:
            self._cleanup()

        if conn.auth_failed:
            exit_code = 1
        return exit_code

    def shutdown(self) -> None:
        """Request a graceful shutdown. Safe to call more than once."""
        self.settings.request_shutdown()

    # =========================================================================
    # INTEREST AND TEARDOWN
    # =========================================================================

    def _update_interest(self) -> None:
        """Make the selector match every connection's read/write flags."""
        wanted: Dict[int, Tuple[int, Connection]] = {}
        for conn in self._connections.values():
            if conn.finished:
                continue
            if conn.read_wanted:
                fd = conn.transport.read_fd
                events, _ = wanted.get(fd, (0, conn))
                wanted[fd] = (events | selectors.EVENT_READ, conn)
            if conn.write_wanted:
                fd = conn.transport.write_fd
                events, _ = wanted.get(fd, (0, conn))
                wanted[fd] = (events | selectors.EVENT_WRITE, conn)

        for fd in list(self._registered):
            if fd not in wanted:
                self._selector.unregister(fd)
                del self._registered[fd]

        for fd, (events, conn) in wanted.items():
            current = self._registered.get(fd)
            if current is None:
                self._selector.register(fd, events, data=conn)
            elif current != events:
                self._selector.modify(fd, events, data=conn)
            self._registered[fd] = events

    def _unregister(self, conn: Connection) -> None:
        for fd in {conn.transport.read_fd, conn.transport.write_fd}:
            if fd in self._registered:
                try:
                    self._selector.unregister(fd)
                except (KeyError, ValueError):
                    pass
                del self._registered[fd]

    def _reap(self) -> None:
        """Tear down finished connections."""
        for conn_id, conn in list(self._connections.items()):
            if not conn.finished:
                continue
            self._unregister(conn)
            conn.close()
            del self._connections[conn_id]
            logger.debug(f"[{conn_id}] Removed ({len(self._connections)} active)")

    def _begin_shutdown(self) -> None:
        self._close_listener()
        for conn in self._connections.values():
            if conn.is_idle and not conn.finished:
                conn.abandon()

    # =========================================================================
    # SIGNALS AND CLEANUP
    # =========================================================================

    def _setup_signals(self) -> None:
        """
        Turn SIGTERM/SIGINT into a graceful shutdown.

        Signal handlers can only be installed from the main thread; when
        the reactor runs elsewhere (tests) they are left alone.
        """
        if threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            self.shutdown()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self) -> None:
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def _cleanup(self) -> None:
        """Close everything still open."""
        self._restore_signals()
        for conn in list(self._connections.values()):
            self._unregister(conn)
            conn.close()
        self._connections.clear()
        self._close_listener()
        self._selector.close()
