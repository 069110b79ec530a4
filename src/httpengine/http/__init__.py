"""
=============================================================================
HTTP PROTOCOL LAYER
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │ READER (reader.py)                                                  │
    │   header block up to \\r\\n\\r\\n, then exactly Content-Length bytes│
    ├─────────────────────────────────────────────────────────────────────┤
    │ PARSER (request.py)                                                 │
    │   b"GET /match/1 HTTP/1.1\\r\\nHost: x"                             │
    │       → Request(method="GET", path="/match/1", version="1.1", ...)  │
    ├─────────────────────────────────────────────────────────────────────┤
    │ ROUTER (router.py)                                                  │
    │   ordered regex routes, explicit before default                     │
    ├─────────────────────────────────────────────────────────────────────┤
    │ RESPONSE (response.py)                                              │
    │   write_response() helper for handlers                              │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .request import Request, RequestParser, parse_request
from .reader import RequestReader, HEADER_TERMINATOR
from .router import Handler, RouteEntry, RouteSnapshot, RouteTable, Router
from .response import status_line, write_response

__all__ = [
    # Parsing
    "Request",
    "RequestParser",
    "parse_request",

    # Reading
    "RequestReader",
    "HEADER_TERMINATOR",

    # Routing
    "Handler",
    "RouteEntry",
    "RouteSnapshot",
    "RouteTable",
    "Router",

    # Responses
    "status_line",
    "write_response",
]
