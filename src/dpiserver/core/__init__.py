"""
=============================================================================
CORE DAEMON COMPONENTS
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                            REACTOR                                   │
    │  • Owns the listening socket and one selector                        │
    │  • Accepts peers, steps ready connections, tears finished ones down  │
    │  • Turns DpiBye and SIGTERM/SIGINT into a graceful shutdown          │
    └─────────────────────────────────────────────────────────────────────┘
                                    │ steps
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                           CONNECTION                                 │
    │  • Authenticates the peer and parses its request record              │
    │  • Walks the response states one piece per turn                      │
    │  • Buffers partial writes (backpressure)                             │
    └─────────────────────────────────────────────────────────────────────┘
                                    │ pulls from
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                       PROCESS PIPELINE                               │
    │  • Runs man/col, unzip/7z, local scripts                             │
    │  • Literal argv, or /bin/sh only around validated paths              │
    │  • Reaps every helper on every exit path                             │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .pipeline import HelperLaunchError, ProcessPipeline
from .transport import PipeTransport, SocketTransport, Transport
from .connection import Connection
from .reactor import FatalReactorError, Reactor

__all__ = [
    "HelperLaunchError",
    "ProcessPipeline",
    "PipeTransport",
    "SocketTransport",
    "Transport",
    "Connection",
    "FatalReactorError",
    "Reactor",
]
