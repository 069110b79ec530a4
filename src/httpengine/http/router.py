"""
=============================================================================
ROUTE TABLE AND ROUTER
=============================================================================

Maps (path, method) to a handler function.

=============================================================================
TWO TABLES, ONE ORDER
=============================================================================

Routes live in two ordered tables:

    explicit:  ^/string$          POST → echo
               ^/match/([0-9]+)$  GET  → show_match
               ^/info$            GET  → info

    default:   ^/?(.*)$           GET  → serve_file

freeze() flattens them into ONE tuple, explicit entries first, each table
in registration order. The router walks that tuple and stops at the first
entry whose pattern matches the WHOLE path and that has a handler for the
request's method:

    GET /match/123   → show_match, path_match == ("123",)
    GET /match/abc   → pattern fails, falls through to serve_file
    PUT /match/123   → pattern matches but no PUT handler: keep looking

A default entry can never shadow an explicit one, no matter which was
registered first.

=============================================================================
FREEZE BEFORE SERVING
=============================================================================

The table is filled in before the server starts. Server.start() calls
freeze(), which compiles every pattern once and produces a RouteSnapshot
of immutable entries. Every worker thread reads that snapshot; nobody
writes to it, so nobody needs a lock. After freeze() the table refuses
new routes.

=============================================================================
NO MATCH, NO RESPONSE
=============================================================================

When nothing matches, dispatch() returns False and writes nothing. The
driver then writes zero bytes and applies the usual keep-alive rule. If
you want 404 pages, register a catch-all default route that writes one.

=============================================================================
"""

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import BinaryIO, Callable, Dict, List, Mapping, Optional, Tuple

from .request import Request


# =============================================================================
# TYPE ALIASES
# =============================================================================
# A handler writes a complete HTTP response (status line, headers, blank
# line, body) into `output`. The engine never checks what it wrote.

Handler = Callable[[BinaryIO, Request], None]


@dataclass(frozen=True)
class RouteEntry:
    """One frozen route: a compiled pattern and its read-only method map."""

    pattern: "re.Pattern[str]"
    handlers: Mapping[str, Handler]
    is_default: bool = False

    def match(self, request: Request) -> Optional[Tuple[Handler, Tuple[str, ...]]]:
        """Return (handler, captured groups) when both path and method match."""
        match = self.pattern.fullmatch(request.path)
        if match is None:
            return None

        handler = self.handlers.get(request.method)
        if handler is None:
            return None

        return handler, match.groups()


@dataclass(frozen=True)
class RouteSnapshot:
    """Flat, ordered, immutable list of routes consumed by the Router."""

    entries: Tuple[RouteEntry, ...]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)


class RouteTable:
    """
    Mutable, ordered route registry.

    Usage:
        routes = RouteTable()

        @routes.get(r"^/match/([0-9]+)$")
        def show_match(output, request):
            write_response(output, body=request.path_match[0])

        @routes.default_route(r"^/?(.*)$")
        def fallback(output, request):
            write_response(output, 404, body="Not Found")

        snapshot = routes.freeze()
    """

    def __init__(self):
        # pattern → {method → handler}; dicts keep insertion order
        self._explicit: Dict[str, Dict[str, Handler]] = {}
        self._default: Dict[str, Dict[str, Handler]] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __len__(self) -> int:
        return len(self._explicit) + len(self._default)

    # =========================================================================
    # ROUTE REGISTRATION
    # =========================================================================

    def add_route(
        self,
        pattern: str,
        handler: Handler,
        method: str = "GET",
        default: bool = False,
    ):
        """
        Register `handler` for `method` on paths fully matching `pattern`.

        Registering a pattern again adds the method to the existing entry,
        which keeps its original position.

        Raises:
            RuntimeError: The table was already frozen.
            re.error: The pattern is not a valid regular expression.
        """
        if self._frozen:
            raise RuntimeError("Routes cannot be added after the server started")

        re.compile(pattern)  # Fail at registration, not at first request

        table = self._default if default else self._explicit
        table.setdefault(pattern, {})[method] = handler

    def route(
        self,
        pattern: str,
        method: str = "GET",
        default: bool = False,
    ) -> Callable[[Handler], Handler]:
        """Decorator form of add_route()."""

        def decorator(handler: Handler) -> Handler:
            self.add_route(pattern, handler, method, default)
            return handler  # Unchanged, so decorators can be stacked

        return decorator

    def get(self, pattern: str) -> Callable[[Handler], Handler]:
        """Register a GET route."""
        return self.route(pattern, "GET")

    def post(self, pattern: str) -> Callable[[Handler], Handler]:
        """Register a POST route."""
        return self.route(pattern, "POST")

    def put(self, pattern: str) -> Callable[[Handler], Handler]:
        return self.route(pattern, "PUT")

    def delete(self, pattern: str) -> Callable[[Handler], Handler]:
        return self.route(pattern, "DELETE")

    def default_route(self, pattern: str, method: str = "GET") -> Callable[[Handler], Handler]:
        """Register a route that is only tried after every explicit route."""
        return self.route(pattern, method, default=True)

    # =========================================================================
    # FREEZING
    # =========================================================================

    def freeze(self) -> RouteSnapshot:
        """
        Build the immutable snapshot and lock the table.

        Explicit entries come first, then default entries, each in
        registration order.
        """
        self._frozen = True

        entries: List[RouteEntry] = []
        for table, is_default in ((self._explicit, False), (self._default, True)):
            for pattern, handlers in table.items():
                entries.append(RouteEntry(
                    pattern=re.compile(pattern),
                    handlers=MappingProxyType(dict(handlers)),
                    is_default=is_default,
                ))

        return RouteSnapshot(tuple(entries))


class Router:
    """Dispatches requests against a frozen RouteSnapshot."""

    def __init__(self, snapshot: RouteSnapshot):
        self.snapshot = snapshot

    def resolve(self, request: Request) -> Optional[Tuple[Handler, Tuple[str, ...]]]:
        """First (handler, captures) matching the request, or None."""
        for entry in self.snapshot:
            found = entry.match(request)
            if found is not None:
                return found
        return None

    def dispatch(self, request: Request, output: BinaryIO) -> bool:
        """
        Run the matching handler, if any.

        Sets request.path_match, then calls handler(output, request)
        synchronously. Exceptions from the handler propagate to the caller.

        Returns:
            True if a handler ran, False if nothing matched.
        """
        found = self.resolve(request)
        if found is None:
            return False

        handler, captures = found
        request.path_match = captures
        handler(output, request)
        return True
