"""
pytest configuration and fixtures.
"""

import shutil
import socket
import subprocess
import threading
from typing import Callable, Generator, List, Optional, Tuple
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from httpengine import Server, ServerConfig, RouteTable, write_response
from httpengine.core import Connection, Reactor


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET header block (as handed over by the reader)."""
    return (
        b"GET /match/123 HTTP/1.1\r\n"
        b"Host: localhost:12345\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: */*"
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


# =============================================================================
# REACTOR FIXTURES
# =============================================================================


@pytest.fixture
def reactor() -> Generator[Reactor, None, None]:
    """A reactor driven by one background thread."""
    reactor = Reactor(poll_interval=0.01)
    thread = threading.Thread(target=reactor.run, daemon=True)
    thread.start()

    yield reactor

    reactor.stop()
    thread.join(timeout=5.0)
    reactor.close()


@pytest.fixture
def conn_pair() -> Generator[Tuple[Connection, socket.socket], None, None]:
    """A Connection on one end of a socketpair, the raw peer on the other."""
    ours, peer = socket.socketpair()
    conn = Connection(socket=ours, address=("127.0.0.1", 50000))

    yield conn, peer

    conn.close()
    peer.close()


# =============================================================================
# RUNNING SERVER
# =============================================================================


class ServerThread:
    """Runs a Server in a background thread."""

    def __init__(self, server: Server):
        self.server = server
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self.server.port

    def start(self):
        """Start server in background thread and wait until it listens."""
        self._thread = threading.Thread(target=self.server.start, daemon=True)
        self._thread.start()

        if not self.server.wait_until_ready(timeout=5.0):
            raise RuntimeError("Server failed to start")

    def stop(self):
        """Stop the server and wait for start() to return."""
        self.server.stop()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)

    @property
    def is_alive(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def connect(self) -> socket.socket:
        sock = socket.create_connection(("127.0.0.1", self.port), timeout=5.0)
        return sock


def make_test_routes() -> RouteTable:
    """Routes shared by the end-to-end tests."""
    routes = RouteTable()

    @routes.post(r"^/string$")
    def echo(output, request):
        write_response(output, body=request.read_body())

    @routes.get(r"^/match/([0-9]+)$")
    def show_match(output, request):
        write_response(output, body=request.path_match[0])

    @routes.get(r"^/boom$")
    def boom(output, request):
        raise RuntimeError("handler failure")

    @routes.default_route(r"^/?(.*)$")
    def fallback(output, request):
        write_response(output, 404, body=f"default:{request.path_match[0]}")

    return routes


@pytest.fixture
def start_server() -> Generator[Callable[..., ServerThread], None, None]:
    """
    Factory fixture: start_server(routes=None, **config) → ServerThread.

    Servers bind 127.0.0.1 on a port picked by the OS and are stopped
    after the test.
    """
    running: List[ServerThread] = []

    def factory(routes: Optional[RouteTable] = None, **overrides) -> ServerThread:
        settings = {"host": "127.0.0.1", "port": 0, "num_threads": 2, "log_level": "WARNING"}
        settings.update(overrides)

        server = Server(ServerConfig(**settings), routes if routes is not None else make_test_routes())
        thread = ServerThread(server)
        thread.start()
        running.append(thread)
        return thread

    yield factory

    for thread in running:
        thread.stop()


@pytest.fixture
def test_server(start_server) -> ServerThread:
    """A plain HTTP server on 2 threads with the shared test routes."""
    return start_server()


# =============================================================================
# TLS
# =============================================================================


@pytest.fixture(scope="session")
def self_signed_cert(tmp_path_factory) -> Tuple[str, str]:
    """(certificate, key) paths for a throwaway localhost certificate."""
    openssl = shutil.which("openssl")
    if openssl is None:
        pytest.skip("openssl binary not available")

    directory = tmp_path_factory.mktemp("tls")
    cert = directory / "server.crt"
    key = directory / "server.key"

    result = subprocess.run(
        [
            openssl, "req", "-x509", "-newkey", "rsa:2048", "-nodes",
            "-keyout", str(key), "-out", str(cert),
            "-days", "1", "-subj", "/CN=localhost",
        ],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    if result.returncode != 0:
        pytest.skip(f"openssl failed: {result.stderr.decode(errors='replace')}")

    return str(cert), str(key)


# =============================================================================
# CLIENT HELPERS
# =============================================================================


def read_response(sock: socket.socket) -> Tuple[str, dict, bytes]:
    """
    Read one Content-Length delimited response.

    Returns (status line, headers, body). Raises ConnectionError if the
    server closes before a full response arrived.
    """
    data = b""
    while b"\r\n\r\n" not in data:
        chunk = sock.recv(4096)
        if not chunk:
            raise ConnectionError(f"closed after {data!r}")
        data += chunk

    head, rest = data.split(b"\r\n\r\n", 1)
    lines = head.decode("latin-1").split("\r\n")
    headers = dict(line.split(": ", 1) for line in lines[1:])

    length = int(headers.get("Content-Length", "0"))
    while len(rest) < length:
        chunk = sock.recv(4096)
        if not chunk:
            raise ConnectionError("closed in the middle of the body")
        rest += chunk

    # One request in flight per test client: nothing may follow the body
    assert len(rest) == length
    return lines[0], headers, rest


def is_closed(sock: socket.socket) -> bool:
    """True when the server closed the connection without sending anything."""
    try:
        return sock.recv(4096) == b""
    except ConnectionResetError:
        return True
