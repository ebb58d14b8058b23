"""
=============================================================================
DPISERVER - Local-resource protocol daemons
=============================================================================

Small long-lived daemons that serve local resources to a browser over a
private socket. Each one authenticates its peer, reads a dpip request
record and streams back an HTTP-framed response.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          DAEMONS                                     │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   file    file:/home/user/      listings and file downloads          │
    │   zip     zip:/tmp/a.zip/x.txt  archive listings, member extraction  │
    │   man     man:ls(1)             manual pages as HTML                 │
    │                                                                      │
    │   dls     dls:weather?berlin    local scripts     (one request)      │
    │   gopher  gopher://host/1/      gopher relay      (one request)      │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    dpiserver/
    ├── __main__.py          # CLI entry point (python -m dpiserver)
    ├── daemon.py            # Daemon: handler + reactor
    ├── config.py            # DaemonConfig, RuntimeSettings
    ├── core/                # Reactor, connection state machine, helpers
    ├── dpip/                # Record codec and authentication
    ├── http/                # Status codes and response heads
    ├── resources/           # Paths, listings, content types, archives
    └── handlers/            # One backend per daemon, listing renderer

=============================================================================
QUICK START
=============================================================================

    from dpiserver import Daemon, DaemonConfig

    daemon = Daemon("file", DaemonConfig(port=5000, require_auth=False))
    daemon.run()

=============================================================================
"""

from .config import DaemonConfig, RuntimeSettings
from .daemon import Daemon, create_handler, setup_logging

__version__ = "1.0.0"

__all__ = [
    "Daemon",
    "DaemonConfig",
    "RuntimeSettings",
    "create_handler",
    "setup_logging",
    "__version__",
]
