"""
=============================================================================
HTTPENGINE CLI ENTRY POINT
=============================================================================

Runs the engine with the demo routes.

=============================================================================
USAGE
=============================================================================

    # Plain HTTP on port 12345 with 4 threads
    python -m httpengine

    # HTTPS: certificate chain and private key together
    python -m httpengine --cert server.crt --key server.key

    # Custom port, more threads, another web root
    python -m httpengine --port 8080 --threads 8 --web-root ./public

Unset options fall back to the environment (HTTP_HOST, HTTP_PORT,
HTTP_THREADS, HTTP_CERT_FILE, HTTP_KEY_FILE, HTTP_LOG_LEVEL), then to
the built-in defaults.

=============================================================================
"""

import argparse
import dataclasses
import sys

from . import __version__
from .config import ServerConfig
from .handlers import register_demo_routes
from .server import Server


def main(argv=None):
    """
    Main CLI entry point.

    - --host: Bind address
    - --port, -p: Port
    - --threads, -t: Event loop threads
    - --cert / --key: Certificate chain and private key (HTTPS)
    - --web-root: Directory served by the default route
    - --log-level, -l: Logging verbosity
    - --version: Show version
    """
    parser = argparse.ArgumentParser(
        prog="httpengine",
        description="Multi-threaded HTTP/HTTPS engine with regex routing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m httpengine                                  # HTTP on 12345
  python -m httpengine --cert server.crt --key server.key  # HTTPS
  python -m httpengine -p 8080 -t 8 --web-root ./public
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--host", default=None, help="Host to bind to (default: 0.0.0.0)")

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help="Port to listen on (default: 12345)"
    )

    parser.add_argument(
        "--threads", "-t",
        type=int,
        default=None,
        help="Threads driving the event loop, the main thread included (default: 4)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # TLS ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--cert", default=None, help="PEM certificate chain file (enables HTTPS)")
    parser.add_argument("--key", default=None, help="PEM private key file (enables HTTPS)")

    # ─────────────────────────────────────────────────────────────────────
    # FEATURE ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--web-root",
        default="web",
        help="Directory served by the default GET route (default: ./web)"
    )

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO)"
    )

    parser.add_argument("--version", action="version", version=f"httpengine {__version__}")

    args = parser.parse_args(argv)

    # =========================================================================
    # CREATE CONFIGURATION
    # =========================================================================
    # CLI flags override the environment

    overrides = {
        "host": args.host,
        "port": args.port,
        "num_threads": args.threads,
        "certificate_chain_file": args.cert,
        "private_key_file": args.key,
        "log_level": args.log_level,
    }
    overrides = {name: value for name, value in overrides.items() if value is not None}

    try:
        config = dataclasses.replace(ServerConfig.from_env(), **overrides)
        server = Server(config)
    except (ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    register_demo_routes(server.routes, args.web_root)

    # =========================================================================
    # RUN SERVER
    # =========================================================================
    # Blocks until SIGINT/SIGTERM

    print(f"Server starting at {server.scheme}://{config.host}:{config.port}")
    try:
        server.start()
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
