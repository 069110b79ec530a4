"""
=============================================================================
SERVER
=============================================================================

Ties the pieces together: configuration, route table, reactor, acceptor,
worker pool and one ConnectionDriver per connection.

=============================================================================
ARCHITECTURE OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         ENGINE ARCHITECTURE                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │                        ┌─────────────────┐                           │
    │                        │     Server      │                           │
    │                        │ (Orchestrator)  │                           │
    │                        └────────┬────────┘                           │
    │                                 │                                    │
    │            ┌────────────────────┼────────────────────┐               │
    │            │                    │                    │               │
    │            ▼                    ▼                    ▼               │
    │    ┌──────────────┐    ┌──────────────┐    ┌──────────────┐         │
    │    │   Acceptor   │    │  WorkerPool  │    │  RouteTable  │         │
    │    │ (+Transport) │    │  N threads   │    │  → Router    │         │
    │    └──────┬───────┘    └──────┬───────┘    └──────────────┘         │
    │           │                   │                                      │
    │           │                   ▼                                      │
    │           │            ┌──────────────┐                              │
    │           └──────────► │   Reactor    │ ◄── every socket operation   │
    │                        └──────┬───────┘                              │
    │                               │                                      │
    │                               ▼                                      │
    │                     ConnectionDriver (one per connection)            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
LIFECYCLE
=============================================================================

    Server(config, routes)      validate config, build TLS context, reactor
         │
         │   register routes (server.routes / decorators)
         ▼
    server.start()              BLOCKS until stop()
         ├── configure logging
         ├── freeze routes → Router
         ├── socket, bind, listen
         ├── Acceptor.start()
         └── WorkerPool.run()   calling thread is one of the N
    server.stop()               from a handler, a signal, another thread

A server runs once: its route table is frozen by start().

=============================================================================
"""

import logging
import signal
import socket
import threading
from typing import Dict, Optional, Tuple

from .config import ServerConfig
from .core import Acceptor, Connection, Reactor, WorkerPool, make_transport
from .driver import ConnectionDriver
from .http import RequestParser, RequestReader, RouteTable, Router


logger = logging.getLogger(__name__)


class Server:
    """
    Multi-threaded HTTP/1.x server on a shared event loop.

    Usage:
        server = Server(ServerConfig(port=8080, num_threads=4))

        @server.get(r"^/hello$")
        def hello(output, request):
            write_response(output, body="Hello")

        server.start()          # Blocks until server.stop()
    """

    def __init__(self, config: Optional[ServerConfig] = None, routes: Optional[RouteTable] = None):
        """
        Args:
            config: Server configuration. Defaults apply when omitted.
            routes: Route table to serve. A new empty one when omitted.

        Raises:
            ValueError: Invalid configuration.
            ssl.SSLError, OSError: Certificate or key could not be loaded.
        """
        self.config = config or ServerConfig()
        self.config.validate()  # Fail fast on invalid config

        # ─────────────────────────────────────────────────────────────────
        # CORE COMPONENTS
        # ─────────────────────────────────────────────────────────────────

        # Built now so a bad certificate fails here, not on the first client
        self.transport = make_transport(self.config)

        self.reactor = Reactor(
            poll_interval=self.config.poll_interval,
            buffer_size=self.config.buffer_size,
        )
        self._reader = RequestReader(self.reactor, self.config.max_header_size)
        self._parser = RequestParser()

        # ─────────────────────────────────────────────────────────────────
        # APPLICATION COMPONENTS
        # ─────────────────────────────────────────────────────────────────

        self.routes = routes if routes is not None else RouteTable()
        self._router: Optional[Router] = None

        # ─────────────────────────────────────────────────────────────────
        # RUNTIME STATE
        # ─────────────────────────────────────────────────────────────────

        self._socket: Optional[socket.socket] = None
        self._address: Optional[Tuple[str, int]] = None
        self._ready = threading.Event()
        self._original_handlers: Dict[int, object] = {}

    # =========================================================================
    # ROUTE REGISTRATION (Decorator Style)
    # =========================================================================

    def route(self, pattern: str, method: str = "GET"):
        """Register a route handler for `method`."""
        return self.routes.route(pattern, method)

    def get(self, pattern: str):
        return self.routes.get(pattern)

    def post(self, pattern: str):
        return self.routes.post(pattern)

    def put(self, pattern: str):
        return self.routes.put(pattern)

    def delete(self, pattern: str):
        return self.routes.delete(pattern)

    def default_route(self, pattern: str, method: str = "GET"):
        return self.routes.default_route(pattern, method)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        """(host, port) actually bound; None before start() bound the socket."""
        return self._address

    @property
    def port(self) -> Optional[int]:
        return self._address[1] if self._address else None

    @property
    def scheme(self) -> str:
        return self.transport.scheme

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the socket is listening. Returns False on timeout."""
        return self._ready.wait(timeout)

    # =========================================================================
    # SERVER LIFECYCLE
    # =========================================================================

    def start(self):
        """
        Bind, listen and serve (blocking).

        Returns after stop(). The calling thread is one of the
        config.num_threads event loop threads.

        Raises:
            OSError: The address could not be bound.
        """
        self._setup_logging()

        self._router = Router(self.routes.freeze())

        self._socket = self._create_socket()
        try:
            self._socket.bind((self.config.host, self.config.port))
        except OSError as e:
            logger.error(f"Failed to bind to {self.config.host}:{self.config.port}: {e}")
            self._socket.close()
            self.reactor.close()
            raise

        self._socket.listen(self.config.backlog)
        self._address = self._socket.getsockname()[:2]

        self._setup_signals()

        logger.info(
            f"Listening on {self.scheme}://{self._address[0]}:{self._address[1]} "
            f"({self.config.num_threads} threads, {len(self._router.snapshot)} routes)"
        )

        acceptor = Acceptor(self.reactor, self._socket, self.transport, self._on_connection)
        acceptor.start()
        self._ready.set()

        try:
            WorkerPool(self.reactor, self.config.num_threads).run()
        finally:
            self._cleanup()

    def stop(self):
        """Stop the event loop; start() returns once the workers are joined."""
        logger.info("Shutting down server...")
        self.reactor.stop()

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)

        # Rebind right after a restart even with connections in TIME_WAIT
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return sock

    def _setup_logging(self):
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("httpengine").setLevel(level)

    def _setup_signals(self):
        """
        SIGTERM / SIGINT stop the server instead of killing it.

        Python only allows signal handlers on the main thread; a server
        started from any other thread (tests, embedding) skips this.
        """
        if threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            self.stop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            self._original_handlers[sig] = signal.signal(sig, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def _cleanup(self):
        self._restore_signals()

        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None

        self.reactor.close()
        self._ready.clear()
        logger.info("Server stopped")

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _on_connection(self, conn: Connection):
        """Called by the acceptor once a connection is ready for HTTP."""
        logger.debug(f"[{conn.id}] New connection from {conn.client_ip}")
        ConnectionDriver(conn, self.reactor, self._reader, self._parser, self._router).start()


def create_server(
    port: int,
    num_threads: int,
    certificate_chain_file: Optional[str] = None,
    private_key_file: Optional[str] = None,
    **kwargs,
) -> Server:
    """
    Create a server with its own empty route table.

    Passing both certificate_chain_file and private_key_file makes it
    serve HTTPS. Remaining keyword arguments go to ServerConfig (host,
    backlog, log_level, ...).

    Example:
        server = create_server(8443, 4, "chain.pem", "key.pem")
        server.routes.add_route(r"^/info$", info)
        server.start()
    """
    config = ServerConfig(
        port=port,
        num_threads=num_threads,
        certificate_chain_file=certificate_chain_file,
        private_key_file=private_key_file,
        **kwargs,
    )
    return Server(config)
