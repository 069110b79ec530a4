"""
=============================================================================
HTTPENGINE - Multi-threaded HTTP/HTTPS Engine on a Shared Event Loop
=============================================================================

Accepts TCP connections (optionally TLS-wrapped), reads HTTP/1.x requests
off the wire, routes each one by regular expression and method to a
handler, writes the handler's bytes back and keeps the connection open for
the next request when the protocol version allows it.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    httpengine/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m httpengine)
    ├── server.py            # Server orchestrator, create_server()
    ├── driver.py            # Per-connection request cycle
    ├── config.py            # ServerConfig dataclass
    ├── handlers.py          # Demo routes (echo, match, info, static)
    ├── core/                # Networking and concurrency
    │   ├── reactor.py       # Shared event loop, async socket operations
    │   ├── worker_pool.py   # Threads driving the reactor
    │   ├── acceptor.py      # Accept loop, plain and TLS transports
    │   └── connection.py    # Socket + unread-bytes buffer
    └── http/                # HTTP protocol
        ├── reader.py        # Header block and body reads
        ├── request.py       # Request model and parser
        ├── router.py        # Route table, frozen snapshot, dispatch
        └── response.py      # write_response() helper

=============================================================================
QUICK START
=============================================================================

    from httpengine import create_server, write_response

    server = create_server(port=8080, num_threads=4)

    @server.get(r"^/match/([0-9]+)$")
    def match(output, request):
        write_response(output, body=request.path_match[0])

    server.start()

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig
from .http import Request, RouteTable, write_response
from .server import Server, create_server

__all__ = [
    "Server",
    "create_server",
    "ServerConfig",
    "RouteTable",
    "Request",
    "write_response",
    "__version__",
]
