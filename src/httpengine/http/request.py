"""
=============================================================================
HTTP REQUEST MODEL AND PARSER
=============================================================================

Turns a raw header block into a Request.

=============================================================================
WHAT THE PARSER SEES
=============================================================================

The reader hands over everything before the blank line, without the
terminator, and keeps the body for itself:

    GET /match/123 HTTP/1.1\\r\\n          ← request line
    Host: localhost:12345\\r\\n            ← header
    Accept: */*                          ← header (last line, no CRLF)

=============================================================================
REGEX PATTERNS EXPLAINED
=============================================================================

REQUEST_LINE_PATTERN: ^([^ ]+) ([^ ]+) HTTP/([^ ]+)$

    ([^ ]+)     - Group 1: METHOD (anything but a space)
    ` `         - Single space
    ([^ ]+)     - Group 2: PATH
    ` HTTP/`    - Literal version prefix
    ([^ ]+)     - Group 3: VERSION without the prefix ("1.1")

HEADER_PATTERN: ^([^:]+): ?(.*)$

    ([^:]+)     - Group 1: Name (anything except colon)
    `: ?`       - Colon and at most ONE space
    (.*)        - Group 2: Value (rest of line, verbatim)

=============================================================================
LENIENT BY CONTRACT
=============================================================================

    Request line does not match    → empty Request (is_valid is False).
                                     The driver closes without routing it.
    A header line does not match   → header parsing STOPS there; headers
                                     parsed so far are kept, later lines
                                     are ignored. This is not an error.

Header names are kept exactly as sent ("Content-Length" and
"content-length" are different keys). A repeated header keeps its last
value.

=============================================================================
"""

import io
import re
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple


# Versions above this keep the connection open (HTTP/1.1 and later)
PERSISTENT_VERSION_THRESHOLD = 1.05

# Digits and an optional fraction; float() alone would also take "1_1" or "inf"
VERSION_NUMBER_PATTERN = re.compile(r"\d+(?:\.\d+)?")


@dataclass
class Request:
    """
    Represents a parsed HTTP request.

    Attributes:
        method:         "GET", "POST", ... ("" when the request line was bad)
        path:           Request target exactly as sent, query string included
        version:        Version number without "HTTP/", e.g. "1.1"
        headers:        Header name → value, names case-sensitive
        path_match:     Groups captured by the winning route pattern
        body:           Readable stream over exactly Content-Length bytes,
                        None when the request carried no body
        client_address: (ip, port) of the peer
    """

    method: str = ""
    path: str = ""
    version: str = ""
    headers: Dict[str, str] = field(default_factory=dict)

    # Set by the router
    path_match: Tuple[str, ...] = ()

    # Set by the driver after the body read
    body: Optional[io.BytesIO] = field(default=None, repr=False)

    client_address: tuple = ("", 0)

    @property
    def is_valid(self) -> bool:
        """False when the request line could not be parsed."""
        return bool(self.method and self.path)

    @property
    def content_length(self) -> Optional[int]:
        """
        Declared body length, or None without a Content-Length header.

        Raises:
            ValueError: The header is not a non-negative integer.
        """
        raw = self.headers.get("Content-Length")
        if raw is None:
            return None

        raw = raw.strip()
        if not raw.isdigit():
            raise ValueError(f"Invalid Content-Length: {raw!r}")
        return int(raw)

    @property
    def keep_alive(self) -> bool:
        """
        Whether the connection stays open after the response.

        The leading decimal number of the version is compared: "1.1" keeps
        the connection, "1.0" closes it. Trailing junk is ignored ("1_1"
        reads as 1), and a version that does not start with a digit closes
        the connection.
        """
        match = VERSION_NUMBER_PATTERN.match(self.version)
        if match is None:
            return False
        return float(match.group()) > PERSISTENT_VERSION_THRESHOLD

    def read_body(self) -> bytes:
        """Return the whole body (b"" when there is none)."""
        if self.body is None:
            return b""
        return self.body.getvalue()


class RequestParser:
    """
    Parses a raw header block into a Request.

    Stateless: one parser is shared by every connection.
    """

    REQUEST_LINE_PATTERN = re.compile(r"^([^ ]+) ([^ ]+) HTTP/([^ ]+)$")
    HEADER_PATTERN = re.compile(r"^([^:]+): ?(.*)$")

    def parse(self, header_block: bytes, client_address: tuple = ("", 0)) -> Request:
        """
        Parse a header block.

        Args:
            header_block: Request line and headers, without the final
                          \\r\\n\\r\\n.
            client_address: Peer address, copied onto the Request.

        Returns:
            The parsed Request; check is_valid before routing it.
        """
        request = Request(client_address=client_address)

        lines = header_block.decode("utf-8", errors="replace").split("\n")

        match = self.REQUEST_LINE_PATTERN.match(_strip_cr(lines[0]))
        if not match:
            return request

        request.method, request.path, request.version = match.groups()

        for line in lines[1:]:
            match = self.HEADER_PATTERN.match(_strip_cr(line))
            if not match:
                break
            name, value = match.groups()
            request.headers[name] = value

        return request


def _strip_cr(line: str) -> str:
    return line[:-1] if line.endswith("\r") else line


def parse_request(header_block: bytes) -> Request:
    """Convenience function: parse with a throwaway parser."""
    return RequestParser().parse(header_block)
