"""
=============================================================================
DEMO HANDLERS
=============================================================================

The sample routes the launcher (python -m httpengine) serves:

    ┌────────┬──────────────────────────┬────────────────────────────────┐
    │ Method │ Pattern                  │ Response                       │
    ├────────┼──────────────────────────┼────────────────────────────────┤
    │ POST   │ ^/string$                │ the request body, echoed       │
    │ GET    │ ^/match/([0-9a-zA-Z]+)$  │ the captured segment           │
    │ GET    │ ^/info$                  │ HTML page describing the       │
    │        │                          │ request (method, path, headers)│
    │ GET    │ ^/?(.*)$   (default)     │ a file below the web root      │
    └────────┴──────────────────────────┴────────────────────────────────┘

They double as examples of writing handlers: a handler receives the output
stream and the request, and writes a complete HTTP response.

=============================================================================
SECURITY: PATH TRAVERSAL
=============================================================================

The static route takes its file name straight from the URL, so
"GET /../../etc/passwd" must not escape the web root:

    full_path = (web_root / requested).resolve()
    full_path.relative_to(web_root)      # ValueError if outside → 403

=============================================================================
"""

import html
import logging
import mimetypes
from pathlib import Path
from typing import BinaryIO, Union

from .http.request import Request
from .http.response import write_response
from .http.router import Handler, RouteTable


logger = logging.getLogger(__name__)


def echo(output: BinaryIO, request: Request):
    """POST /string: send the body back."""
    write_response(output, body=request.read_body())


def show_match(output: BinaryIO, request: Request):
    """GET /match/<id>: send back the captured path segment."""
    write_response(output, body=request.path_match[0])


def info(output: BinaryIO, request: Request):
    """GET /info: describe the request as an HTML page."""
    ip, port = request.client_address[:2]

    rows = "".join(
        f"<tr><td>{html.escape(name)}</td><td>{html.escape(value)}</td></tr>"
        for name, value in request.headers.items()
    )
    page = (
        "<html><head><title>Request info</title></head><body>"
        f"<h1>{html.escape(request.method)} {html.escape(request.path)} "
        f"HTTP/{html.escape(request.version)}</h1>"
        f"<p>Client: {html.escape(str(ip))}:{port}</p>"
        f"<table>{rows}</table>"
        "</body></html>"
    )
    write_response(output, body=page, content_type="text/html; charset=utf-8")


class StaticFiles:
    """
    Serves files below `web_root`; used as the default GET route.

    "/" and directories serve their index.html. Anything missing answers
    404 and anything outside the root 403. A NUL byte in the path gets 400.
    """

    def __init__(self, web_root: Union[str, Path], index_file: str = "index.html"):
        # Resolve now: the traversal check compares resolved paths
        self.web_root = Path(web_root).resolve()
        self.index_file = index_file

    def __call__(self, output: BinaryIO, request: Request):
        requested = request.path_match[0] if request.path_match else request.path
        requested = requested.split("?", 1)[0].lstrip("/")

        if "\x00" in requested:
            write_response(output, 400, body="Bad Request")
            return

        full_path = (self.web_root / requested).resolve()
        try:
            full_path.relative_to(self.web_root)
        except ValueError:
            logger.warning(f"Path traversal attempt: {requested}")
            write_response(output, 403, body="Forbidden")
            return

        if full_path.is_dir():
            full_path = full_path / self.index_file

        if not full_path.is_file():
            write_response(output, 404, body=f"Not Found: /{requested}")
            return

        content_type, _ = mimetypes.guess_type(full_path.name)
        write_response(
            output,
            body=full_path.read_bytes(),
            content_type=content_type or "application/octet-stream",
        )


def register_demo_routes(routes: RouteTable, web_root: Union[str, Path] = "web") -> RouteTable:
    """Add the demo routes to `routes` and return it."""
    routes.add_route(r"^/string$", echo, "POST")
    routes.add_route(r"^/match/([0-9a-zA-Z]+)$", show_match, "GET")
    routes.add_route(r"^/info$", info, "GET")

    static: Handler = StaticFiles(web_root)
    routes.add_route(r"^/?(.*)$", static, "GET", default=True)
    return routes
