"""
=============================================================================
HTTP RESPONSE BUILDER
=============================================================================

Builds and serializes HTTP/1.1 responses.

    HTTP/1.1 200 OK\\r\\n                          ← status line
    Content-Type: text/plain\\r\\n                 ← headers
    Content-Length: 15\\r\\n                       ← auto-added
    Date: Mon, 19 Oct 2026 12:00:00 GMT\\r\\n      ← auto-added
    Server: helloworld/1.0.0\\r\\n                 ← auto-added
    \\r\\n
    Hello world v3\\n                             ← body

Relayed proxy responses carry whatever status the upstream sent, so the
status is an int (HTTPStatus members are ints too) and the reason phrase
can be overridden.

A header value may be a list: each item is written on its own line.
Set-Cookie in particular cannot be folded into one comma-joined value,
since cookie dates contain commas.

    Set-Cookie: a=1; Expires=Wed, 21 Oct 2026 07:28:00 GMT\\r\\n
    Set-Cookie: b=2\\r\\n

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, List, Union

from .status_codes import HTTPStatus, reason_phrase


@dataclass
class HTTPResponse:
    """
    An HTTP response to be sent to the client.

    Use ResponseBuilder for the common cases; build HTTPResponse directly
    when relaying a response from elsewhere.
    """

    status: int = HTTPStatus.OK
    headers: Dict[str, Union[str, List[str]]] = field(default_factory=dict)
    body: bytes = b""
    reason: Optional[str] = None
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        """
        The HTTP status line, e.g. "HTTP/1.1 200 OK".

        Uses the explicit reason phrase if one was given.
        """
        phrase = self.reason if self.reason is not None else reason_phrase(self.status)
        return f"{self.version} {int(self.status)} {phrase}"

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        self.headers[name] = value
        return self

    def add_header(self, name: str, value: str) -> "HTTPResponse":
        """
        Add a value, keeping any already set under the same name
        (compared case-insensitively). Repeated names become a list.
        """
        key = next((k for k in self.headers if k.lower() == name.lower()), name)
        existing = self.headers.get(key)
        if existing is None:
            self.headers[key] = value
        elif isinstance(existing, list):
            existing.append(value)
        else:
            self.headers[key] = [existing, value]
        return self

    def has_header(self, name: str) -> bool:
        """Case-insensitive; relayed headers keep the upstream's casing."""
        name = name.lower()
        return any(key.lower() == name for key in self.headers)

    def set_body(self, body: Union[str, bytes]) -> "HTTPResponse":
        self.body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    def to_bytes(self, server_name: str = "helloworld", include_body: bool = True) -> bytes:
        """
        Serialize the response for socket.sendall().

        Content-Length, Date and Server are added when missing. With
        include_body=False (HEAD requests) the headers still describe the
        body, but the body itself is not written.

        Args:
            server_name: Value for the Server header.
            include_body: Write the body after the headers.

        Returns:
            The complete response as bytes.
        """
        response_headers = dict(self.headers)

        if not self.has_header("Content-Length"):
            response_headers["Content-Length"] = str(len(self.body))

        if not self.has_header("Date"):
            response_headers["Date"] = format_http_date(datetime.now(timezone.utc))

        if not self.has_header("Server"):
            response_headers["Server"] = server_name

        lines = [self.status_line]
        for name, value in response_headers.items():
            values = value if isinstance(value, list) else [value]
            for item in values:
                lines.append(f"{name}: {item}")
        lines.append("")

        # Header values relayed from upstream may hold latin-1 bytes.
        header_bytes = "\r\n".join(lines).encode("latin-1", errors="replace") + b"\r\n"

        if not include_body:
            return header_bytes
        return header_bytes + self.body


class ResponseBuilder:
    """
    Fluent builder for HTTP responses.

        response = (ResponseBuilder()
            .status(HTTPStatus.OK)
            .text("accepting", content_type="text/plain")
            .header("Cache-Control", "no-store")
            .build())

    Every method except build() returns the builder.
    """

    def __init__(self):
        self._status: int = HTTPStatus.OK
        self._headers: Dict[str, str] = {}
        self._body: bytes = b""

    def status(self, status: int) -> "ResponseBuilder":
        self._status = status
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        self._headers[name] = value
        return self

    def headers(self, headers: Dict[str, str]) -> "ResponseBuilder":
        self._headers.update(headers)
        return self

    def content_type(self, content_type: str) -> "ResponseBuilder":
        return self.header("Content-Type", content_type)

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    def text(self, text: str, content_type: str = "text/plain; charset=utf-8") -> "ResponseBuilder":
        """
        Plain text body.

        The greeting and health endpoints pass content_type="text/plain"
        so the header is exactly that value.
        """
        self._body = text.encode("utf-8")
        self._headers["Content-Type"] = content_type
        return self

    def no_cache(self) -> "ResponseBuilder":
        self._headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
        return self

    def close_connection(self) -> "ResponseBuilder":
        self._headers["Connection"] = "close"
        return self

    def build(self) -> HTTPResponse:
        return HTTPResponse(
            status=self._status,
            headers=self._headers,
            body=self._body,
        )


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231).

    Example: "Mon, 19 Oct 2026 12:00:00 GMT". Always GMT.
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


def text_response(text: str, status: int = HTTPStatus.OK) -> HTTPResponse:
    """A text/plain response with exactly that Content-Type value."""
    return ResponseBuilder().status(status).text(text, content_type="text/plain").build()


def error_response(status: HTTPStatus, message: str = "") -> HTTPResponse:
    """
    Plain-text error response that closes the connection.

    Used for failures the router never sees: parse errors, read
    timeouts, handler crashes.
    """
    return (ResponseBuilder()
        .status(status)
        .text(message or status.phrase)
        .close_connection()
        .build())
