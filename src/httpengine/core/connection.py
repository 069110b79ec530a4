"""
=============================================================================
CONNECTION
=============================================================================

A Connection is one accepted client socket plus the bytes that have been
pulled off the wire but not consumed yet.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

A single recv() does not return "one request". It returns whatever the
kernel has buffered, which can be half a request line or two whole
requests:

    recv() → b"GET / HTTP/1.1\\r\\nHost: a\\r\\n\\r\\nPOST /x HTTP/1.1\\r\\nCont"
                                             ▲
                                             └── header terminator

The reader looks for \\r\\n\\r\\n in `buffer`. Everything behind the
terminator is NOT thrown away: it is the start of the body, or of the next
pipelined request, and stays in `buffer` until someone takes it.

    ┌──────────────────────────────────────────────────────────────────┐
    │ buffer: [ header block | \\r\\n\\r\\n | body bytes | next request ] │
    │           ─── take(n) ───►                                        │
    └──────────────────────────────────────────────────────────────────┘

=============================================================================
OWNERSHIP
=============================================================================

While a read or write is outstanding, the reactor's pending operation holds
a reference to the Connection; the driver holds another. Whichever lets go
last drops the socket. close() is explicit and idempotent so a connection
is never closed twice by the two owners.

=============================================================================
"""

import socket
import logging
import uuid
from enum import Enum
from dataclasses import dataclass, field


logger = logging.getLogger(__name__)


class PeerClosedError(ConnectionError):
    """The client closed its side of the connection before we were done."""


class ConnectionState(Enum):
    """
    Connection lifecycle states.

    Mirrors the driver's view of the connection, mostly useful in logs.
    """
    NEW = "new"                # Just accepted (or handshaken)
    READING = "reading"        # Waiting for request bytes
    PROCESSING = "processing"  # Handler is running
    WRITING = "writing"        # Response bytes in flight
    KEEP_ALIVE = "keep_alive"  # Response sent, next request expected
    CLOSED = "closed"          # Socket released


@dataclass(eq=False)
class Connection:
    """
    Represents a client connection.

    Attributes:
        socket: The client socket (plain or ssl.SSLSocket), non-blocking.
        address: Client's (ip, port) tuple.
        id: Short identifier used in log lines.
        state: Current connection state.
        requests_handled: Number of completed request/response cycles.
        buffer: Bytes received but not consumed yet.
    """

    socket: socket.socket
    address: tuple

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    requests_handled: int = 0
    buffer: bytearray = field(default_factory=bytearray, repr=False)

    def __post_init__(self):
        # All I/O goes through the reactor, which never blocks on a socket
        self.socket.setblocking(False)

    @property
    def client_ip(self) -> str:
        """Get the client IP address."""
        return self.address[0] if self.address else ""

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    def take(self, size: int) -> bytes:
        """
        Remove and return the first `size` buffered bytes.

        Anything beyond `size` stays buffered for the next reader.
        """
        data = bytes(self.buffer[:size])
        del self.buffer[:size]
        return data

    def close(self):
        """
        Close the connection.

        shutdown(SHUT_WR) first so the client sees a FIN rather than a
        reset, then release the descriptor. Safe to call more than once.
        """
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSED

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # Peer already gone

        try:
            self.socket.close()
        except OSError:
            pass

        self.buffer.clear()
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")
