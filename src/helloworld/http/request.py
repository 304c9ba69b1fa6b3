"""
=============================================================================
HTTP REQUEST PARSING
=============================================================================

Turns the raw bytes of one HTTP/1.x request into an HTTPRequest.

    GET /_info?verbose=1 HTTP/1.1\r\n         ← request line
    Host: example.com\r\n                      ← headers
    Content-Length: 0\r\n
    \r\n                                       ← separator
                                               ← body (Content-Length bytes,
                                                  or chunked)

=============================================================================
WHAT IS DELIBERATELY NOT VALIDATED
=============================================================================

The router sends every path it does not recognise to the greeting, so the
parser accepts any request target that fits on the request line: "..",
doubled slashes, stray percent-escapes. Only the request *framing* can make
a request unparseable (bad request line, unknown HTTP version, oversized
message, malformed header line).

The raw request target is kept next to the decoded path because the ACME
proxy must forward it byte-for-byte, query string included.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Optional, Dict
from urllib.parse import parse_qs, urlsplit, unquote
import re


class HTTPParseError(Exception):
    """
    Raised when HTTP request parsing fails.

    Carries the status code to answer with:

        400 Bad Request                - malformed request line or header
        413 Payload Too Large          - request exceeds size limit
        501 Not Implemented            - transfer coding other than chunked
        505 HTTP Version Not Supported - not HTTP/1.0 or HTTP/1.1
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


# =============================================================================
# CHUNKED TRANSFER CODING
# =============================================================================
#
#     5\r\n                 ← chunk size, hex, optional ";ext"
#     hello\r\n             ← chunk data
#     0\r\n                 ← last chunk
#     Expires: ...\r\n      ← optional trailers (discarded)
#     \r\n
#
# =============================================================================

CHUNK_SIZE_PATTERN = re.compile(rb"^([0-9A-Fa-f]+)[ \t]*(?:;.*)?$")


def transfer_codings(value: str) -> list[str]:
    """Transfer-Encoding header value as a list of lower-cased codings."""
    return [coding.strip().lower() for coding in value.split(",") if coding.strip()]


def is_chunked(transfer_encoding: str) -> bool:
    """True if chunked is the final transfer coding."""
    codings = transfer_codings(transfer_encoding)
    return bool(codings) and codings[-1] == "chunked"


def _chunk_spans(data: bytes, start: int) -> Optional[tuple[list[tuple[int, int]], int]]:
    """
    Locate the chunks of a chunked body beginning at data[start].

    Returns:
        ([(offset, size), ...], end) where end is the offset just past the
        trailer section, or None if data stops before the body does.

    Raises:
        HTTPParseError: Bad chunk size line or missing CRLF after a chunk.
    """
    spans = []
    pos = start

    while True:
        line_end = data.find(b"\r\n", pos)
        if line_end == -1:
            return None

        match = CHUNK_SIZE_PATTERN.match(data[pos:line_end])
        if not match:
            raise HTTPParseError(f"Invalid chunk size line: {data[pos:line_end][:32]!r}")

        size = int(match.group(1), 16)
        pos = line_end + 2
        if size == 0:
            break

        if len(data) < pos + size + 2:
            return None
        if data[pos + size:pos + size + 2] != b"\r\n":
            raise HTTPParseError("Chunk data not followed by CRLF")

        spans.append((pos, size))
        pos += size + 2

    while True:
        line_end = data.find(b"\r\n", pos)
        if line_end == -1:
            return None
        trailer = data[pos:line_end]
        pos = line_end + 2
        if not trailer:
            return spans, pos


def chunked_body_end(data: bytes, start: int = 0) -> Optional[int]:
    """Offset just past a complete chunked body, None while incomplete."""
    located = _chunk_spans(data, start)
    return None if located is None else located[1]


def decode_chunked(data: bytes, start: int = 0) -> bytes:
    """
    Reassemble a chunked body. Trailers are dropped.

    Raises:
        HTTPParseError: Malformed or incomplete framing.
    """
    located = _chunk_spans(data, start)
    if located is None:
        raise HTTPParseError("Incomplete chunked body")
    spans, _ = located
    return b"".join(data[offset:offset + size] for offset, size in spans)


@dataclass(frozen=True)
class TLSInfo:
    """
    Negotiated parameters of a TLS connection.

    Attributes:
        protocol:    ALPN protocol the client and server agreed on, or ""
        cipher_name: OpenSSL cipher name (e.g. "TLS_AES_256_GCM_SHA384")
        cipher_id:   IANA cipher suite number (e.g. 0x1302)
        version:     TLS protocol version string (e.g. "TLSv1.3")
    """

    protocol: str = ""
    cipher_name: str = ""
    cipher_id: int = 0
    version: str = ""


@dataclass
class HTTPRequest:
    """
    A parsed HTTP request.

    =========================================================================
    ATTRIBUTES
    =========================================================================

        method:         HTTP method, upper case
        path:           Percent-decoded path without the query string
        target:         Raw request target as sent ("/a%20b?x=1")
        version:        "HTTP/1.1" or "HTTP/1.0"
        headers:        Header names lower-cased
        query_params:   Parsed query string, name → list of values
        body:           Body bytes, chunked framing already removed
        client_address: (ip, port) of the peer
        tls:            TLSInfo when the connection is TLS, else None

    Handlers treat requests as read-only.

    =========================================================================
    """

    method: str
    path: str
    target: str = ""
    version: str = "HTTP/1.1"

    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, list[str]] = field(default_factory=dict)
    body: bytes = b""

    client_address: tuple[str, int] = ("", 0)
    tls: Optional[TLSInfo] = None

    def __post_init__(self):
        if not self.target:
            self.target = self.path

    @property
    def is_tls(self) -> bool:
        return self.tls is not None

    @property
    def remote_addr(self) -> str:
        """
        Client address as "ip:port".

        IPv6 addresses are bracketed ("[::1]:5000") so the port stays
        unambiguous.
        """
        ip, port = self.client_address[0], self.client_address[1]
        if ":" in ip:
            return f"[{ip}]:{port}"
        return f"{ip}:{port}"

    @property
    def content_length(self) -> int:
        """Content-Length as an int, 0 if missing or invalid."""
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    @property
    def host(self) -> str:
        return self.headers.get("host", "")

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def is_keep_alive(self) -> bool:
        """
        Whether the connection should stay open after this request.

        HTTP/1.1 keeps alive unless "Connection: close".
        HTTP/1.0 closes unless "Connection: keep-alive".
        """
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """First value of a query parameter."""
        values = self.query_params.get(name, [])
        return values[0] if values else default


class RequestParser:
    """
    Parses raw HTTP request bytes into HTTPRequest objects.

    ==========================================================================
    PARSER STEPS
    ==========================================================================

        1. Size check                      → 413 if too large
        2. Find the \\r\\n\\r\\n separator    → 400 if missing
        3. Request line: METHOD SP TARGET SP VERSION
        4. Header lines, names lower-cased
        5. Body: chunked if Transfer-Encoding says so, otherwise exactly
           Content-Length bytes

    Methods are not checked against a list: any token is accepted and
    routed. Unknown methods simply get the same answer as GET.

    ==========================================================================
    """

    REQUEST_LINE_PATTERN = re.compile(r"^([!#$%&'*+.^_`|~0-9A-Za-z-]+) (\S+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:\s]+):\s*(.*?)\s*$")

    SUPPORTED_VERSIONS = ("HTTP/1.0", "HTTP/1.1")

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(
        self,
        data: bytes,
        client_address: tuple[str, int] = ("", 0),
        tls: Optional[TLSInfo] = None,
    ) -> HTTPRequest:
        """
        Parse raw HTTP request data.

        Args:
            data: Raw request bytes (headers and body).
            client_address: Peer (ip, port).
            tls: Negotiated TLS parameters, None for plaintext.

        Returns:
            Parsed HTTPRequest.

        Raises:
            HTTPParseError: If the request is malformed.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(
                f"Request too large: {len(data)} bytes",
                status_code=413,
            )

        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        # Header bytes are ISO-8859-1 per RFC 7230; latin-1 never fails.
        header_section = data[:header_end].decode("latin-1")
        body = data[header_end + 4:]

        lines = header_section.split("\r\n")
        method, target, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        transfer_encoding = headers.get("transfer-encoding")
        if transfer_encoding is not None:
            body = self._decode_transfer_encoding(transfer_encoding, body)
            # Transfer-Encoding wins over Content-Length; from here on the
            # body is plain bytes.
            del headers["transfer-encoding"]
            headers["content-length"] = str(len(body))
        else:
            try:
                content_length = int(headers.get("content-length", 0))
            except ValueError:
                raise HTTPParseError("Invalid Content-Length header")
            if content_length < 0:
                raise HTTPParseError("Invalid Content-Length header")

            if len(body) < content_length:
                raise HTTPParseError(
                    f"Incomplete body: expected {content_length} bytes, got {len(body)}"
                )
            body = body[:content_length]

        path, query_params = self._split_target(target)

        return HTTPRequest(
            method=method,
            path=path,
            target=target,
            version=version,
            headers=headers,
            query_params=query_params,
            body=body,
            client_address=client_address,
            tls=tls,
        )

    def _parse_request_line(self, line: str) -> tuple[str, str, str]:
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line!r}")

        method, target, version = match.groups()

        if version not in self.SUPPORTED_VERSIONS:
            raise HTTPParseError(
                f"Unsupported HTTP version: {version}",
                status_code=505,
            )

        return method.upper(), target, version

    def _decode_transfer_encoding(self, value: str, body: bytes) -> bytes:
        """
        Only "chunked" is understood. Any other coding is 501; chunked
        appearing anywhere but alone is a framing error.
        """
        codings = transfer_codings(value)
        unknown = [coding for coding in codings if coding != "chunked"]
        if unknown:
            raise HTTPParseError(
                f"Unsupported Transfer-Encoding: {', '.join(unknown)}",
                status_code=501,
            )
        if codings != ["chunked"]:
            raise HTTPParseError(f"Invalid Transfer-Encoding: {value!r}")
        return decode_chunked(body)

    def _split_target(self, target: str) -> tuple[str, Dict[str, list[str]]]:
        """
        Split the request target into a decoded path and query params.

        Absolute-form targets ("http://host/path") are reduced to their
        path. Origin-form targets are split at the first "?" only, so
        "//host/_health" stays a path and is not read as an authority.
        """
        if target.startswith("/"):
            raw_path, _, query = target.partition("?")
        else:
            parts = urlsplit(target)
            raw_path, query = parts.path, parts.query
        path = unquote(raw_path) or "/"
        query_params = parse_qs(query, keep_blank_values=True)
        return path, query_params

    def _parse_headers(self, lines: list[str]) -> Dict[str, str]:
        """
        Parse header lines into a dict with lower-cased names.

        Repeated headers are joined with ", " (RFC 7230 section 3.2.2).
        Obsolete line folding (continuation lines starting with whitespace)
        is appended to the previous header.
        """
        headers: Dict[str, str] = {}
        last_name: Optional[str] = None

        for line in lines:
            if not line:
                continue

            if line[0] in " \t":
                if last_name is None:
                    raise HTTPParseError("Invalid header continuation")
                headers[last_name] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                raise HTTPParseError(f"Invalid header line: {line!r}")

            name, value = match.groups()
            name = name.lower()
            if name in headers:
                headers[name] = f"{headers[name]}, {value}"
            else:
                headers[name] = value
            last_name = name

        return headers


def parse_request(data: bytes, client_address: tuple[str, int] = ("", 0)) -> HTTPRequest:
    """Parse a request with default parser settings."""
    return RequestParser().parse(data, client_address)
