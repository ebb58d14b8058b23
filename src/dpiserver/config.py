"""
=============================================================================
DAEMON CONFIGURATION
=============================================================================

Centralized configuration for every daemon in the package.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m dpiserver zip --archiver 7z                     │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── DPI_ARCHIVER=7z python -m dpiserver zip                   │
    │                                                                      │
    │   3. Defaults (below)                                               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
WHERE DOES THE LISTENING SOCKET COME FROM?
=============================================================================

The browser's launcher creates the listening socket and starts the
daemon with it as stdin (listen_fd = 0, the default). For development
the daemon can bind its own socket instead:

    socket_path   a Unix domain socket path      (wins over port)
    host, port    a TCP address (port 0 = any free port)

=============================================================================
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


ARCHIVER_CHOICES = ("unzip", "7z")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class DaemonConfig:
    """
    Configuration for a daemon process.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    LISTENING
    - listen_fd, socket_path, host, port, backlog

    I/O
    - buffer_size, chunk_size, select_timeout, max_record_size

    SECURITY
    - keys_file, require_auth

    BACKENDS
    - hide_dotfiles, legacy_style, archiver, dls_dir

    LOGGING
    - log_level

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # LISTENING
    # ─────────────────────────────────────────────────────────────────────

    listen_fd: Optional[int] = 0
    """
    Inherited listening socket descriptor.
    The launcher passes it as stdin, hence the default of 0.
    """

    socket_path: Optional[str] = None
    """
    Bind a Unix domain socket here instead of using listen_fd.
    """

    host: str = "127.0.0.1"
    """
    TCP address to bind when port is set.
    """

    port: Optional[int] = None
    """
    Bind a TCP socket on this port instead of using listen_fd.
    0 asks the OS for any free port (handy in tests).
    """

    backlog: int = 128
    """
    Maximum number of queued connections for a self-bound socket.
    """

    # ─────────────────────────────────────────────────────────────────────
    # I/O
    # ─────────────────────────────────────────────────────────────────────

    buffer_size: int = 8192
    """
    Bytes read from a peer per recv().
    """

    chunk_size: int = 16 * 1024
    """
    Bytes of body read from a file or helper per write turn.
    One chunk per turn keeps a large transfer from starving the others.
    """

    select_timeout: float = 1.0
    """
    Seconds the reactor waits for readiness before re-checking the
    shutdown flag.
    """

    max_record_size: int = 64 * 1024
    """
    Largest dpip record accepted from a peer.
    """

    # ─────────────────────────────────────────────────────────────────────
    # SECURITY
    # ─────────────────────────────────────────────────────────────────────

    keys_file: str = "~/.dillo/dpid_comm_keys"
    """
    File holding "<port> <secret>"; the secret authenticates peers.
    """

    require_auth: bool = True
    """
    Demand an auth record before any request on a connection.
    """

    # ─────────────────────────────────────────────────────────────────────
    # BACKENDS
    # ─────────────────────────────────────────────────────────────────────

    hide_dotfiles: bool = True
    """
    Leave dotfiles, backups (~) and autosaves (#) out of listings.
    """

    legacy_style: bool = False
    """
    Start with the plain <pre> listing style instead of the table.
    Toggled at runtime through dpi:/<name>/toggle.
    """

    archiver: str = "unzip"
    """
    External archiver for the zip daemon: "unzip" or "7z".
    """

    dls_dir: str = "/usr/local/lib/dillo/dls"
    """
    Directory holding local scripts (<name>.dls) for the dls daemon.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """
    Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    Logs always go to stderr; stdout may be the transport.
    """

    @property
    def keys_path(self) -> Path:
        """keys_file with ~ expanded."""
        return Path(self.keys_file).expanduser()

    @classmethod
    def from_env(cls) -> "DaemonConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        DPI_SOCKET        Unix socket path to bind
        DPI_HOST          TCP host (default: 127.0.0.1)
        DPI_PORT          TCP port to bind
        DPI_KEYS_FILE     Shared secret file (default: ~/.dillo/dpid_comm_keys)
        DPI_ARCHIVER      unzip or 7z (default: unzip)
        DPI_DLS_DIR       Local script directory
        DPI_LEGACY_STYLE  1 to start with plain listings
        DPI_LOG_LEVEL     Logging level (default: INFO)

        =====================================================================
        """
        defaults = cls()
        port = os.getenv("DPI_PORT")
        try:
            port_number = int(port) if port else None
        except ValueError:
            raise ValueError(f"Invalid DPI_PORT: {port!r}. Must be a number.") from None
        return cls(
            socket_path=os.getenv("DPI_SOCKET"),
            host=os.getenv("DPI_HOST", defaults.host),
            port=port_number,
            keys_file=os.getenv("DPI_KEYS_FILE", defaults.keys_file),
            archiver=os.getenv("DPI_ARCHIVER", defaults.archiver),
            dls_dir=os.getenv("DPI_DLS_DIR", defaults.dls_dir),
            legacy_style=os.getenv("DPI_LEGACY_STYLE", "0") in ("1", "true", "yes"),
            log_level=os.getenv("DPI_LOG_LEVEL", defaults.log_level),
        )

    def validate(self) -> None:
        """
        Validate configuration values at startup (fail fast).

        Raises:
            ValueError: On the first invalid value.
        """
        if self.port is not None and not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.port is None and self.socket_path is None and self.listen_fd is None:
            raise ValueError("No listening socket: set listen_fd, socket_path or port")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")

        if self.select_timeout <= 0:
            raise ValueError("select_timeout must be > 0")

        if self.max_record_size < 256:
            raise ValueError("max_record_size must be >= 256")

        if self.archiver not in ARCHIVER_CHOICES:
            raise ValueError(f"Unknown archiver: {self.archiver!r}. Choose from {ARCHIVER_CHOICES}")

        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {self.log_level!r}")


@dataclass
class RuntimeSettings:
    """
    Process-wide mutable state shared by all connections.

    The listing style is copied into each connection when its request is
    dispatched; only a toggle request changes it afterwards, so a
    listing already being streamed keeps its style.
    """

    legacy_style: bool = False
    shutdown_requested: bool = False

    def toggle_style(self) -> bool:
        """Flip the listing style; returns the new legacy_style value."""
        self.legacy_style = not self.legacy_style
        return self.legacy_style

    def request_shutdown(self) -> None:
        """Ask the reactor to stop once in-flight connections finish."""
        self.shutdown_requested = True
