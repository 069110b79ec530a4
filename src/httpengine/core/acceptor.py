"""
=============================================================================
ACCEPTOR AND TRANSPORTS
=============================================================================

The acceptor owns the listening socket and turns incoming TCP connections
into Connection objects ready for HTTP.

=============================================================================
RE-ARM FIRST
=============================================================================

    accept completes
        │
        ├──► arm the next accept        ← before anything else
        │
        └──► establish the transport    ← may take several round trips (TLS)

Arming the next accept before servicing the current one means a slow TLS
handshake never delays the next client's accept.

A FAILED accept re-arms after retry_delay instead. Errors such as EMFILE
repeat until a descriptor is freed, and re-arming at once would spin a
thread and flood the log with the same warning.

=============================================================================
TWO TRANSPORTS, ONE CAPABILITY
=============================================================================

    ┌────────────────┬──────────────────────────────────────────────────┐
    │ PlainTransport │ accepted socket is ready for HTTP immediately     │
    ├────────────────┼──────────────────────────────────────────────────┤
    │ TLSTransport   │ wrap socket with the shared SSLContext,          │
    │                │ run the server handshake, THEN hand it over      │
    └────────────────┴──────────────────────────────────────────────────┘

Both expose establish(reactor, sock, address, on_ready); the acceptor does
not care which one it holds. make_transport() picks one from the config.

The SSLContext is built once, at server construction, and only read after
that: every handshake on every thread shares it.

=============================================================================
"""

import socket
import ssl
import logging
import threading
from typing import Callable, Optional, Union

from ..config import ServerConfig
from .connection import Connection
from .reactor import Reactor


logger = logging.getLogger(__name__)


ConnectionCallback = Callable[[Connection], None]

# Pause before accepting again after a failed accept (seconds)
ACCEPT_RETRY_DELAY = 0.1


def _set_nodelay(sock: socket.socket):
    # HTTP wants responses on the wire now, not after Nagle's delay
    try:
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    except OSError:
        pass


class PlainTransport:
    """Plain TCP: accept is the only step."""

    scheme = "http"

    def establish(
        self,
        reactor: Reactor,
        sock: socket.socket,
        address: tuple,
        on_ready: ConnectionCallback,
    ):
        _set_nodelay(sock)
        on_ready(Connection(socket=sock, address=address))


class TLSTransport:
    """
    TLS over TCP: accept, then a server-side handshake.

    A failed handshake closes that one socket; the acceptor keeps going.
    """

    scheme = "https"

    def __init__(self, context: ssl.SSLContext):
        self.context = context

    @classmethod
    def from_files(cls, certificate_chain_file: str, private_key_file: str) -> "TLSTransport":
        """
        Build the shared server context.

        Raises ssl.SSLError or OSError when the files cannot be loaded.
        """
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(certificate_chain_file, private_key_file)
        return cls(context)

    def establish(
        self,
        reactor: Reactor,
        sock: socket.socket,
        address: tuple,
        on_ready: ConnectionCallback,
    ):
        _set_nodelay(sock)
        sock.setblocking(False)

        try:
            tls_sock = self.context.wrap_socket(
                sock, server_side=True, do_handshake_on_connect=False
            )
        except (ssl.SSLError, OSError) as e:
            logger.warning(f"TLS setup failed for {address[0]}: {e}")
            sock.close()
            return

        def on_handshake(error: Optional[Exception], _result):
            if error is not None:
                logger.warning(f"TLS handshake with {address[0]} failed: {error}")
                try:
                    tls_sock.close()
                except OSError:
                    pass
                return

            on_ready(Connection(socket=tls_sock, address=address))

        reactor.async_handshake(tls_sock, on_handshake)


Transport = Union[PlainTransport, TLSTransport]


def make_transport(config: ServerConfig) -> Transport:
    """Pick the transport the configuration asks for."""
    if config.is_tls:
        return TLSTransport.from_files(config.certificate_chain_file, config.private_key_file)
    return PlainTransport()


class Acceptor:
    """
    Accepts connections on a listening socket, forever.

    Usage:
        acceptor = Acceptor(reactor, listener, PlainTransport(), on_connection)
        acceptor.start()          # Arms the first accept; returns immediately
    """

    def __init__(
        self,
        reactor: Reactor,
        listener: socket.socket,
        transport: Transport,
        on_connection: ConnectionCallback,
        retry_delay: float = ACCEPT_RETRY_DELAY,
    ):
        self.reactor = reactor
        self.listener = listener
        self.transport = transport
        self.on_connection = on_connection
        self.retry_delay = retry_delay

    def start(self):
        self.listener.setblocking(False)
        self._arm()

    def _arm(self):
        if self.reactor.stopped:
            return
        self.reactor.async_accept(self.listener, self._on_accept)

    def _arm_later(self):
        timer = threading.Timer(self.retry_delay, self._arm)
        timer.daemon = True
        timer.start()

    def _on_accept(self, error: Optional[Exception], result):
        if self.reactor.stopped:
            if result is not None:
                result[0].close()
            return

        if error is not None:
            # ECONNABORTED and friends: that client is gone, others are not
            logger.warning(f"Accept failed: {error}")
            self._arm_later()
            return

        self._arm()

        sock, address = result
        logger.debug(f"Accepted connection from {address[0]}:{address[1]}")

        self.transport.establish(self.reactor, sock, address, self.on_connection)
