"""
=============================================================================
DAEMON - Ties a handler to the reactor
=============================================================================

    ┌──────────────┐     ┌──────────────┐     ┌──────────────────────────┐
    │ DaemonConfig │ ──► │ DaemonHandler│ ──► │ Reactor                  │
    │ (CLI / env)  │     │ (by name)    │     │  run()           file,   │
    └──────────────┘     └──────────────┘     │                  zip, man│
                                              │  serve_single()  dls,    │
                                              │                  gopher  │
                                              └──────────────────────────┘

Multiplexed daemons accept many peers on their listening socket; filter
daemons talk to exactly one peer over stdin/stdout and exit.

=============================================================================
"""

import logging
from typing import Optional

from .config import DaemonConfig, RuntimeSettings
from .core.reactor import Reactor
from .core.transport import PipeTransport, Transport
from .handlers import HANDLERS, DaemonHandler


logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """
    Configure logging for a daemon process.

    Records go to stderr: stdout may be the transport to the browser.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("dpiserver").setLevel(log_level)


def create_handler(name: str, config: DaemonConfig) -> DaemonHandler:
    """
    Build the handler for a daemon name.

    Raises:
        ValueError: For unknown daemon names.
    """
    try:
        handler_class = HANDLERS[name]
    except KeyError:
        raise ValueError(f"Unknown daemon: {name!r}. Choose from {sorted(HANDLERS)}") from None
    return handler_class(config)


class Daemon:
    """
    One daemon process.

    Usage:
        daemon = Daemon("file", DaemonConfig(port=0))
        sys.exit(daemon.run())
    """

    def __init__(self, name: str, config: Optional[DaemonConfig] = None):
        self.config = config or DaemonConfig()
        self.config.validate()
        self.handler = create_handler(name, self.config)
        self.settings = RuntimeSettings(legacy_style=self.config.legacy_style)
        self.reactor = Reactor(self.config, self.handler, self.settings)

    @property
    def name(self) -> str:
        return self.handler.name

    def run(self, transport: Optional[Transport] = None) -> int:
        """
        Serve until done.

        Args:
            transport: Peer of a filter daemon (default stdin/stdout).

        Returns:
            Process exit code.
        """
        if self.handler.multiplexed:
            logger.info(f"Starting {self.name} daemon")
            return self.reactor.run()

        logger.debug(f"Starting {self.name} filter")
        exit_code = self.reactor.serve_single(transport or PipeTransport())
        logger.debug(f"Exiting {self.name} filter with code {exit_code}")
        return exit_code

    def shutdown(self) -> None:
        """Ask a running daemon to stop once in-flight requests finish."""
        self.reactor.shutdown()
