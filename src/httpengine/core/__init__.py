"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The networking plumbing under the HTTP layer:

    ┌─────────────────────────────────────────────────────────────────────┐
    │ REACTOR        one event loop, selector + ready queue               │
    │ WORKER POOL    N threads all running the reactor                    │
    │ ACCEPTOR       listening socket → Connection (plain or TLS)         │
    │ CONNECTION     client socket + bytes not consumed yet               │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .connection import Connection, ConnectionState, PeerClosedError
from .reactor import Reactor, ReadLimitError
from .worker_pool import WorkerPool, Worker
from .acceptor import Acceptor, PlainTransport, TLSTransport, make_transport

__all__ = [
    "Connection",       # Client socket wrapper with read buffer
    "ConnectionState",  # Enum for connection lifecycle states
    "PeerClosedError",  # Client hung up mid-request
    "Reactor",          # Shared multi-threaded event loop
    "ReadLimitError",   # Delimiter not found within the limit
    "WorkerPool",       # Threads driving the reactor
    "Worker",
    "Acceptor",         # Accept loop with re-arm-first semantics
    "PlainTransport",
    "TLSTransport",
    "make_transport",
]
