"""
End-to-end tests: a real Server on a loopback port, raw sockets as clients.
"""

import socket
import ssl
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import is_closed, make_test_routes, read_response
from httpengine import Server, ServerConfig, create_server


def get(path: str, version: str = "1.1") -> bytes:
    return f"GET {path} HTTP/{version}\r\nHost: localhost\r\n\r\n".encode()


def post(path: str, body: bytes, version: str = "1.1") -> bytes:
    return (
        f"POST {path} HTTP/{version}\r\n"
        f"Host: localhost\r\n"
        f"Content-Length: {len(body)}\r\n"
        f"\r\n"
    ).encode() + body


class TestRequestCycle:
    """Tests for a single request/response cycle."""

    def test_match_capture(self, test_server):
        with test_server.connect() as sock:
            sock.sendall(get("/match/123"))
            status, headers, body = read_response(sock)

        assert status == "HTTP/1.1 200 OK"
        assert body == b"123"

    def test_default_route(self, test_server):
        with test_server.connect() as sock:
            sock.sendall(get("/match/abc"))
            status, _, body = read_response(sock)

        assert status == "HTTP/1.1 404 Not Found"
        assert body == b"default:match/abc"

    def test_post_body_exact_length(self, test_server):
        """The handler sees exactly Content-Length bytes."""
        with test_server.connect() as sock:
            sock.sendall(post("/string", b"hello world"))
            _, _, body = read_response(sock)

        assert body == b"hello world"

    def test_body_sent_after_headers(self, test_server):
        request = post("/string", b"0123456789" * 1000)
        head, body = request.split(b"\r\n\r\n", 1)

        with test_server.connect() as sock:
            sock.sendall(head + b"\r\n\r\n")
            time.sleep(0.05)
            sock.sendall(body[:10])
            time.sleep(0.05)
            sock.sendall(body[10:])
            _, _, echoed = read_response(sock)

        assert echoed == body

    def test_headers_split_across_packets(self, test_server):
        request = get("/match/77")

        with test_server.connect() as sock:
            for i in range(0, len(request), 5):
                sock.sendall(request[i:i + 5])
                time.sleep(0.005)
            _, _, body = read_response(sock)

        assert body == b"77"

    def test_zero_content_length(self, test_server):
        with test_server.connect() as sock:
            sock.sendall(post("/string", b""))
            _, headers, body = read_response(sock)

        assert headers["Content-Length"] == "0"
        assert body == b""


class TestPersistentConnections:
    """Keep-alive is decided by the request's protocol version."""

    def test_http11_keeps_connection_open(self, test_server):
        with test_server.connect() as sock:
            for n in range(5):
                sock.sendall(get(f"/match/{n}"))
                _, _, body = read_response(sock)
                assert body == str(n).encode()

    def test_http10_closes_after_response(self, test_server):
        with test_server.connect() as sock:
            sock.sendall(get("/match/1", version="1.0"))
            _, _, body = read_response(sock)

            assert body == b"1"
            assert is_closed(sock)

    def test_pipelined_requests(self, test_server):
        """A second request sent with the first is served after it."""
        with test_server.connect() as sock:
            sock.sendall(post("/string", b"first") + get("/match/2"))

            data = b""
            deadline = time.monotonic() + 5.0
            while data.count(b"HTTP/1.1 200 OK") < 2 or not data.endswith(b"2"):
                assert time.monotonic() < deadline
                data += sock.recv(4096)

        first, second = data.split(b"HTTP/1.1 200 OK")[1:]
        assert first.endswith(b"\r\n\r\nfirst")
        assert second.endswith(b"\r\n\r\n2")


class TestErrorHandling:
    """Failures close the connection and leave the server running."""

    def test_malformed_request_line(self, test_server):
        """No HTTP/ token: closed without a single byte written."""
        with test_server.connect() as sock:
            sock.sendall(b"GARBAGE\r\n\r\n")
            assert is_closed(sock)

    def test_invalid_content_length(self, test_server):
        with test_server.connect() as sock:
            sock.sendall(b"POST /string HTTP/1.1\r\nContent-Length: lots\r\n\r\n")
            assert is_closed(sock)

    def test_handler_exception(self, test_server):
        with test_server.connect() as sock:
            sock.sendall(get("/boom"))
            assert is_closed(sock)

        # The server itself is unaffected
        with test_server.connect() as sock:
            sock.sendall(get("/match/5"))
            assert read_response(sock)[2] == b"5"

    def test_no_match_http11_stays_open(self, test_server):
        """Nothing matches: zero bytes written, connection kept for 1.1."""
        with test_server.connect() as sock:
            sock.sendall(b"PUT /nothing HTTP/1.1\r\n\r\n")
            sock.sendall(get("/match/9"))
            _, _, body = read_response(sock)

        assert body == b"9"

    def test_no_match_http10_closes(self, test_server):
        with test_server.connect() as sock:
            sock.sendall(b"PUT /nothing HTTP/1.0\r\n\r\n")
            assert is_closed(sock)

    def test_header_too_large(self, start_server):
        server = start_server(buffer_size=1024, max_header_size=4096)

        with server.connect() as sock:
            sock.sendall(b"GET /" + b"a" * 8192)
            assert is_closed(sock)

    def test_client_disconnect_mid_request(self, test_server):
        with test_server.connect() as sock:
            sock.sendall(b"GET /match/1 HTTP/1.1\r\nHost")

        with test_server.connect() as sock:
            sock.sendall(get("/match/3"))
            assert read_response(sock)[2] == b"3"


class TestConcurrency:
    """Many connections, few threads."""

    def test_50_concurrent_connections_on_2_threads(self, start_server):
        server = start_server(num_threads=2)

        # Open every connection first so they are all in flight together
        sockets = [server.connect() for _ in range(50)]

        def exchange(n):
            sock = sockets[n]
            try:
                sock.sendall(post("/string", f"client-{n}".encode()))
                return read_response(sock)[2]
            finally:
                sock.close()

        with ThreadPoolExecutor(max_workers=50) as executor:
            bodies = list(executor.map(exchange, range(50)))

        assert bodies == [f"client-{n}".encode() for n in range(50)]

    def test_idle_connection_does_not_block_others(self, start_server):
        """One thread, one silent client: other clients are still served."""
        server = start_server(num_threads=1)

        with server.connect() as idle:
            idle.sendall(b"GET /match/1 HTTP/1.1\r\n")  # Headers never finished

            with server.connect() as sock:
                sock.sendall(get("/match/2"))
                assert read_response(sock)[2] == b"2"


class TestTLS:
    """HTTPS round trip with a self-signed certificate."""

    @pytest.fixture
    def client_context(self):
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context

    def test_round_trip(self, start_server, self_signed_cert, client_context):
        cert, key = self_signed_cert
        server = start_server(certificate_chain_file=cert, private_key_file=key)
        assert server.server.scheme == "https"

        with server.connect() as raw:
            with client_context.wrap_socket(raw, server_hostname="localhost") as sock:
                sock.sendall(get("/match/42"))
                assert read_response(sock)[2] == b"42"

                sock.sendall(post("/string", b"over tls"))
                assert read_response(sock)[2] == b"over tls"

    def test_failed_handshake_keeps_server_running(self, start_server, self_signed_cert, client_context):
        cert, key = self_signed_cert
        server = start_server(certificate_chain_file=cert, private_key_file=key)

        # Plain HTTP against the TLS port
        with server.connect() as sock:
            sock.sendall(get("/match/1"))
            try:
                sock.recv(4096)
            except ConnectionResetError:
                pass

        with server.connect() as raw:
            with client_context.wrap_socket(raw, server_hostname="localhost") as sock:
                sock.sendall(get("/match/7"))
                assert read_response(sock)[2] == b"7"

    def test_missing_certificate(self, tmp_path):
        with pytest.raises(OSError):
            Server(ServerConfig(
                certificate_chain_file=str(tmp_path / "missing.crt"),
                private_key_file=str(tmp_path / "missing.key"),
            ))


class TestServerLifecycle:
    """Tests for construction, startup and stop."""

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            Server(ServerConfig(num_threads=0))

    def test_create_server(self):
        server = create_server(8080, 3, host="127.0.0.1")

        assert server.config.port == 8080
        assert server.config.num_threads == 3
        assert server.config.host == "127.0.0.1"
        assert server.scheme == "http"
        assert len(server.routes) == 0
        server.reactor.close()

    def test_routes_frozen_after_start(self, test_server):
        with pytest.raises(RuntimeError):
            test_server.server.routes.add_route(r"^/late$", lambda output, request: None)

    def test_decorators_register_on_route_table(self):
        server = Server(ServerConfig())

        @server.get(r"^/a$")
        def a(output, request):
            pass

        @server.post(r"^/a$")
        def b(output, request):
            pass

        assert dict(server.routes.freeze().entries[0].handlers) == {"GET": a, "POST": b}
        server.reactor.close()

    def test_stop(self, start_server):
        server = start_server()
        port = server.port

        server.stop()

        assert not server.is_alive
        with pytest.raises(OSError):
            socket.create_connection(("127.0.0.1", port), timeout=1.0)

    def test_bind_failure(self, test_server):
        """A port already in use raises from start()."""
        server = Server(ServerConfig(host="127.0.0.1", port=test_server.port), make_test_routes())

        with pytest.raises(OSError):
            server.start()
