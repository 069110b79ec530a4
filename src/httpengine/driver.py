"""
=============================================================================
CONNECTION DRIVER
=============================================================================

Runs the request/response cycle for one connection, one step at a time.

=============================================================================
STATE MACHINE
=============================================================================

    IDLE ──► HEADER_READ ──► BODY_READ ──► ROUTED ──► RESPONDING ──┐
                  │          (only with       │            │       │
                  │       Content-Length > 0) │            │       ▼
                  │               │           │            │   PERSIST_LOOP
                  │               │           │            │   (version > 1.05)
                  │               │           │            │       │
                  │               │           │            │       └──► IDLE
                  ▼               ▼           ▼            ▼
                 ─────────────────────── CLOSED ◄─────── (version <= 1.05)

    read error, EOF              → CLOSED, nothing written
    request line unparsable      → CLOSED, nothing written
    bad Content-Length           → CLOSED, nothing written
    handler raised               → CLOSED, nothing written
    no route matched             → zero bytes written, then the usual rule
    write error                  → CLOSED

=============================================================================
WHY CALLBACKS INSTEAD OF A while LOOP?
=============================================================================

The blocking version of this is the familiar loop:

    while True:
        raw = conn.read_request()       # blocks a thread
        ...
        conn.send_response(data)        # blocks a thread
        if not keep_alive:
            break

Here every arrow in the diagram is a reactor operation whose completion
handler starts the next step. Between steps the connection costs no
thread at all. Each step is issued only after the previous one completed,
so a connection never has two operations in flight.

PERSIST_LOOP → IDLE is not a recursive call: the write's completion
handler runs from the reactor's ready queue with a fresh stack, so a
keep-alive connection serving a million requests uses the same stack depth
as one serving a single request.

=============================================================================
"""

import io
import functools
import logging
from enum import Enum
from typing import Optional

from .core.connection import Connection, ConnectionState
from .core.reactor import Reactor
from .http.reader import RequestReader
from .http.request import Request, RequestParser
from .http.router import Router


logger = logging.getLogger(__name__)


class DriverState(Enum):
    IDLE = "idle"
    HEADER_READ = "header_read"
    BODY_READ = "body_read"
    ROUTED = "routed"
    RESPONDING = "responding"
    PERSIST_LOOP = "persist_loop"
    CLOSED = "closed"


class ConnectionDriver:
    """
    Drives read → parse → route → write → (loop | close) on one connection.

    Usage:
        ConnectionDriver(conn, reactor, reader, parser, router).start()

    The driver keeps itself alive through the completion handlers it
    registers; there is no need to hold on to it.
    """

    def __init__(
        self,
        conn: Connection,
        reactor: Reactor,
        reader: RequestReader,
        parser: RequestParser,
        router: Router,
    ):
        self.conn = conn
        self.reactor = reactor
        self.reader = reader
        self.parser = parser
        self.router = router
        self.state = DriverState.IDLE

    def start(self):
        """Begin the first request cycle."""
        self._next_request()

    # =========================================================================
    # READ
    # =========================================================================

    def _next_request(self):
        self.state = DriverState.IDLE
        self.conn.state = ConnectionState.READING

        self.state = DriverState.HEADER_READ
        self.reader.read_header(self.conn, self._on_header)

    def _on_header(self, error: Optional[Exception], header_block: Optional[bytes]):
        if error is not None:
            # EOF between keep-alive requests is the normal way to say goodbye
            logger.debug(f"[{self.conn.id}] Header read ended: {error!r}")
            self._close()
            return

        request = self.parser.parse(header_block, self.conn.address)
        if not request.is_valid:
            logger.debug(f"[{self.conn.id}] Malformed request line, closing")
            self._close()
            return

        try:
            content_length = request.content_length
        except ValueError as e:
            logger.debug(f"[{self.conn.id}] {e}, closing")
            self._close()
            return

        if content_length:
            self.state = DriverState.BODY_READ
            self.reader.read_body(
                self.conn, content_length, functools.partial(self._on_body, request)
            )
            return

        self._route(request)

    def _on_body(self, request: Request, error: Optional[Exception], body: Optional[bytes]):
        if error is not None:
            logger.debug(f"[{self.conn.id}] Body read failed: {error!r}")
            self._close()
            return

        request.body = io.BytesIO(body)
        self._route(request)

    # =========================================================================
    # ROUTE
    # =========================================================================

    def _route(self, request: Request):
        self.state = DriverState.ROUTED
        self.conn.state = ConnectionState.PROCESSING

        output = io.BytesIO()
        try:
            handled = self.router.dispatch(request, output)
        except Exception as e:
            logger.exception(
                f"[{self.conn.id}] Handler error for {request.method} {request.path}: {e}"
            )
            self._close()
            return

        if not handled:
            logger.debug(f"[{self.conn.id}] No route for {request.method} {request.path}")

        self._respond(request, output.getvalue())

    # =========================================================================
    # WRITE
    # =========================================================================

    def _respond(self, request: Request, data: bytes):
        self.state = DriverState.RESPONDING
        self.conn.state = ConnectionState.WRITING

        self.reactor.async_write(
            self.conn, data, functools.partial(self._on_written, request)
        )

    def _on_written(self, request: Request, error: Optional[Exception], written: Optional[int]):
        if error is not None:
            logger.warning(f"[{self.conn.id}] Send failed: {error}")
            self._close()
            return

        self.conn.requests_handled += 1
        logger.debug(
            f'[{self.conn.id}] {self.conn.client_ip} "{request.method} {request.path} '
            f'HTTP/{request.version}" {written}'
        )

        if not request.keep_alive:
            self._close()
            return

        self.state = DriverState.PERSIST_LOOP
        self.conn.state = ConnectionState.KEEP_ALIVE
        self._next_request()

    def _close(self):
        self.state = DriverState.CLOSED
        self.conn.close()
