"""
=============================================================================
RESPONSE WRITING
=============================================================================

Handlers write raw HTTP into a byte stream; the engine sends those bytes
as they are. write_response() saves handlers from assembling the status
line and headers by hand:

    write_response(output, 200, "Hello", content_type="text/plain")

writes

    HTTP/1.1 200 OK\\r\\n
    Content-Length: 5\\r\\n
    Content-Type: text/plain\\r\\n
    \\r\\n
    Hello

Content-Length is always set: the client relies on it to find the end of
the body on a persistent connection (no chunked encoding here).

=============================================================================
"""

from http import HTTPStatus
from typing import BinaryIO, Dict, Optional, Union


def status_line(status: Union[int, HTTPStatus], version: str = "1.1") -> bytes:
    """
    Build "HTTP/1.1 200 OK\\r\\n".

    Unknown codes get an empty reason phrase.
    """
    code = int(status)
    try:
        phrase = HTTPStatus(code).phrase
    except ValueError:
        phrase = ""
    return f"HTTP/{version} {code} {phrase}\r\n".encode("latin-1")


def write_response(
    output: BinaryIO,
    status: Union[int, HTTPStatus] = HTTPStatus.OK,
    body: Union[bytes, str] = b"",
    content_type: str = "text/plain; charset=utf-8",
    headers: Optional[Dict[str, str]] = None,
) -> int:
    """
    Write a complete response into `output`.

    Args:
        output: Stream handed to the handler.
        status: HTTP status code.
        body: Response body; str is encoded as UTF-8.
        content_type: Content-Type header value.
        headers: Extra headers, written after Content-Length/Content-Type.

    Returns:
        Number of bytes written.
    """
    if isinstance(body, str):
        body = body.encode("utf-8")

    lines = [
        f"Content-Length: {len(body)}",
        f"Content-Type: {content_type}",
    ]
    for name, value in (headers or {}).items():
        lines.append(f"{name}: {value}")

    head = status_line(status) + ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")
    return output.write(head + body)
