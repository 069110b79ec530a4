"""
=============================================================================
REQUEST READER
=============================================================================

Gets one request's bytes off a connection in two steps:

    ┌─────────────────────────────────────────────────────────────────┐
    │ 1. read_header()                                                 │
    │      read until \\r\\n\\r\\n is in the buffer                        │
    │      hand over everything before it, drop the terminator        │
    │      whatever came after it STAYS in conn.buffer                │
    │                                                                  │
    │ 2. read_body(content_length)                                     │
    │      remaining = content_length - len(conn.buffer)              │
    │      remaining > 0 → ONE reactor read for the rest               │
    │      hand over exactly content_length bytes                     │
    │      anything after them stays buffered (next request)          │
    └─────────────────────────────────────────────────────────────────┘

The over-read in step 1 is normal: recv() returns what the kernel has,
and a small POST usually arrives in a single segment together with its
headers. Those bytes are body, not garbage.

No chunked transfer-encoding: a body without Content-Length is no body.

=============================================================================
"""

from typing import Callable, Optional

from ..core.connection import Connection
from ..core.reactor import Reactor


HEADER_TERMINATOR = b"\r\n\r\n"

# on_done(error, data)
ReadCallback = Callable[[Optional[Exception], Optional[bytes]], None]


class RequestReader:
    """
    Reads header blocks and bodies through the reactor.

    Args:
        reactor: Event loop performing the reads.
        max_header_size: Give up on a client that sends more than this
                         without finishing its headers.
    """

    def __init__(self, reactor: Reactor, max_header_size: int = 64 * 1024):
        self.reactor = reactor
        self.max_header_size = max_header_size

    def read_header(self, conn: Connection, on_done: ReadCallback):
        """Complete with the header block (bytes before \\r\\n\\r\\n)."""

        def on_read(error: Optional[Exception], index: Optional[int]):
            if error is not None:
                on_done(error, None)
                return

            header_block = conn.take(index)
            conn.take(len(HEADER_TERMINATOR))
            on_done(None, header_block)

        self.reactor.async_read_until(
            conn, HEADER_TERMINATOR, on_read, limit=self.max_header_size
        )

    def read_body(self, conn: Connection, content_length: int, on_done: ReadCallback):
        """Complete with exactly `content_length` body bytes."""
        remaining = content_length - len(conn.buffer)

        if remaining <= 0:
            # Everything already arrived with the headers
            self.reactor.post(on_done, None, conn.take(content_length))
            return

        def on_read(error: Optional[Exception], _buffered: Optional[int]):
            if error is not None:
                on_done(error, None)
                return
            on_done(None, conn.take(content_length))

        self.reactor.async_read_at_least(conn, content_length, on_read)
