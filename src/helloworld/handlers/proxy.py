"""
=============================================================================
REVERSE PROXY HANDLER (/.well-known/*)
=============================================================================

Certificate authorities validate ACME HTTP-01 challenges by fetching
/.well-known/acme-challenge/<token> from the domain. The challenge
responder lives elsewhere, so these requests are passed through to a
fixed upstream over plain HTTP.

=============================================================================
REQUEST FLOW
=============================================================================

    Client                    helloworld                   Upstream
      │  GET /.well-known/x       │                            │
      │ ─────────────────────────►│  GET /.well-known/x        │
      │                           │  Host: <client's Host>     │
      │                           │  X-Forwarded-For: <ip>     │
      │                           │ ──────────────────────────►│
      │                           │          200 + body        │
      │         200 + body        │ ◄──────────────────────────│
      │ ◄─────────────────────────│                            │

    Forwarded unchanged:  method, request target (path + query), body,
                          end-to-end headers (Host included)
    Dropped both ways:    hop-by-hop headers (Connection, Keep-Alive,
                          Transfer-Encoding, ...) and any header the
                          Connection header names
    Relayed back:         status, reason phrase, end-to-end headers, body
                          (Content-Length recomputed). A repeated header
                          (Set-Cookie) stays repeated, one line per value

    Upstream unreachable → 502 Bad Gateway, empty body. No retries.

=============================================================================
"""

import http.client
import logging
from typing import Iterable, Optional

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse
from ..http.status_codes import HTTPStatus


logger = logging.getLogger(__name__)


HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-connection",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
})


def _connection_tokens(value: str) -> set[str]:
    return {token.strip().lower() for token in value.split(",") if token.strip()}


def filter_headers(headers: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    """
    Drop hop-by-hop headers.

    Headers named in the message's own Connection header are hop-by-hop
    for that message too.
    """
    headers = list(headers)
    dropped = set(HOP_BY_HOP_HEADERS)
    for name, value in headers:
        if name.lower() == "connection":
            dropped |= _connection_tokens(value)
    return [(name, value) for name, value in headers if name.lower() not in dropped]


class ProxyHandler:
    """
    Forwards requests to a single upstream host.

    Args:
        upstream: "host" or "host:port". Plain HTTP, port 80 by default.
        timeout: Socket timeout for the upstream connection. None keeps
                 the http.client default.
    """

    def __init__(self, upstream: str, timeout: Optional[float] = None):
        self.upstream = upstream
        self.timeout = timeout

    def _connect(self) -> http.client.HTTPConnection:
        if self.timeout is None:
            return http.client.HTTPConnection(self.upstream)
        return http.client.HTTPConnection(self.upstream, timeout=self.timeout)

    def build_upstream_headers(self, request: HTTPRequest) -> dict[str, str]:
        """Request headers as sent upstream."""
        headers = dict(filter_headers(request.headers.items()))

        client_ip = request.client_address[0]
        if client_ip:
            forwarded = headers.get("x-forwarded-for")
            headers["x-forwarded-for"] = f"{forwarded}, {client_ip}" if forwarded else client_ip

        return headers

    def build_response(self, method: str, upstream: http.client.HTTPResponse, body: bytes) -> HTTPResponse:
        """Relay an upstream response."""
        response = HTTPResponse(status=upstream.status, body=body, reason=upstream.reason)
        for name, value in filter_headers(upstream.getheaders()):
            # A HEAD response describes a body that is never sent; keep its length.
            if name.lower() == "content-length" and method != "HEAD":
                continue
            response.add_header(name, value)

        if method != "HEAD":
            response.set_header("Content-Length", str(len(body)))

        return response

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        conn = self._connect()
        try:
            conn.request(
                request.method,
                request.target,
                body=request.body or None,
                headers=self.build_upstream_headers(request),
            )
            upstream = conn.getresponse()
            body = upstream.read()
        except (OSError, http.client.HTTPException) as e:
            logger.error(
                f"Proxy to {self.upstream} failed for {request.method} {request.target}: {e}"
            )
            return HTTPResponse(status=HTTPStatus.BAD_GATEWAY)
        finally:
            conn.close()

        logger.debug(
            f"Proxied {request.method} {request.target} to {self.upstream}: {upstream.status}"
        )
        return self.build_response(request.method, upstream, body)
