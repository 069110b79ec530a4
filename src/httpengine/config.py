"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Everything the engine needs to know before it opens a socket.

=============================================================================
WHY A FROZEN DATACLASS?
=============================================================================

The configuration is read by the acceptor, by every worker thread and by
every connection driver. Nobody is allowed to change it once the server is
built, so the dataclass is frozen:

    config = ServerConfig(port=8443, num_threads=4)
    config.port = 80          # dataclasses.FrozenInstanceError

Read-only data shared between threads needs no locking.

=============================================================================
PLAIN HTTP OR HTTPS?
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      TRANSPORT SELECTION                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   certificate_chain_file + private_key_file set  →  HTTPS (TLS)     │
    │   neither set                                    →  plain HTTP      │
    │   only one of them set                           →  ValueError      │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The files themselves are opaque to the configuration: they are only
opened when the TLS context is built at server construction.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ServerConfig:
    """
    Configuration for the HTTP engine.

    NETWORK SETTINGS
    - host, port, backlog, buffer_size, max_header_size

    CONCURRENCY
    - num_threads, poll_interval

    TLS
    - certificate_chain_file, private_key_file

    LOGGING
    - log_level
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """Address to bind to. "0.0.0.0" listens on every IPv4 interface."""

    port: int = 12345
    """Port to listen on. 0 asks the OS for a free port (handy in tests)."""

    backlog: int = 128
    """Maximum number of connections queued by the kernel before accept()."""

    buffer_size: int = 8192
    """How many bytes a single recv() may pull off the wire."""

    max_header_size: int = 64 * 1024
    """
    Upper bound for a request's header block.
    A client that never sends \\r\\n\\r\\n is cut off once it has sent this much.
    """

    # ─────────────────────────────────────────────────────────────────────
    # CONCURRENCY
    # ─────────────────────────────────────────────────────────────────────

    num_threads: int = 4
    """
    Threads driving the shared event loop.
    The calling thread counts as one: 4 means the caller plus 3 workers.
    """

    poll_interval: float = 0.05
    """Longest time a thread blocks in select() or on the ready queue."""

    # ─────────────────────────────────────────────────────────────────────
    # TLS
    # ─────────────────────────────────────────────────────────────────────

    certificate_chain_file: Optional[str] = None
    """PEM file holding the server certificate followed by any intermediates."""

    private_key_file: Optional[str] = None
    """PEM file holding the private key matching the certificate."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"

    @property
    def is_tls(self) -> bool:
        """True when the server should wrap every connection in TLS."""
        return bool(self.certificate_chain_file and self.private_key_file)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        HTTP_HOST       Bind address (default: 0.0.0.0)
        HTTP_PORT       Port (default: 12345)
        HTTP_THREADS    Event loop threads (default: 4)
        HTTP_CERT_FILE  Certificate chain file (enables HTTPS with HTTP_KEY_FILE)
        HTTP_KEY_FILE   Private key file
        HTTP_LOG_LEVEL  Logging level (default: INFO)
        """
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "12345")),
            num_threads=int(os.getenv("HTTP_THREADS", "4")),
            certificate_chain_file=os.getenv("HTTP_CERT_FILE") or None,
            private_key_file=os.getenv("HTTP_KEY_FILE") or None,
            log_level=os.getenv("HTTP_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called from Server.__init__ so a bad value fails at startup,
        not on the first request.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.num_threads < 1:
            raise ValueError("num_threads must be >= 1")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.max_header_size < self.buffer_size:
            raise ValueError("max_header_size must be >= buffer_size")

        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")

        if bool(self.certificate_chain_file) != bool(self.private_key_file):
            raise ValueError(
                "certificate_chain_file and private_key_file must be given together"
            )
