"""
=============================================================================
HTTP STATUS CODES
=============================================================================

The status codes this server emits itself, plus a lookup for the reason
phrase of any code it relays from an upstream.

    HTTP/1.1 200 OK
             ─── ──
              │   │
              │   └── Reason phrase
              └────── Status code

The router never produces 404 or 405: every path has a handler. The codes
below cover the interim answer to "Expect: 100-continue", the success
path, request framing failures, handler crashes and proxy failures. A
transfer coding other than chunked gets 501.

=============================================================================
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """
    HTTP status codes used by the server.

    IntEnum, so members compare equal to plain integers:

        >>> HTTPStatus.OK == 200
        True
        >>> HTTPStatus.BAD_GATEWAY.phrase
        'Bad Gateway'
    """

    # 1xx INFORMATIONAL
    CONTINUE = 100

    # 2xx SUCCESS
    OK = 200

    # 4xx CLIENT ERRORS
    BAD_REQUEST = 400
    REQUEST_TIMEOUT = 408
    PAYLOAD_TOO_LARGE = 413

    # 5xx SERVER ERRORS
    INTERNAL_SERVER_ERROR = 500
    NOT_IMPLEMENTED = 501
    BAD_GATEWAY = 502
    HTTP_VERSION_NOT_SUPPORTED = 505

    @property
    def phrase(self) -> str:
        """Reason phrase for the status line."""
        return reason_phrase(self)

    @property
    def is_success(self) -> bool:
        return 200 <= self < 300

    @property
    def is_error(self) -> bool:
        """4xx or 5xx."""
        return self >= 400


# =============================================================================
# REASON PHRASES
# =============================================================================
#
# Relayed upstream responses can carry any status code, so the table is
# wider than the enum. Per RFC 7230 reason phrases are informational only;
# an unknown code gets "Unknown".
#
# =============================================================================

_STATUS_PHRASES = {
    100: "Continue",
    101: "Switching Protocols",
    200: "OK",
    201: "Created",
    202: "Accepted",
    203: "Non-Authoritative Information",
    204: "No Content",
    205: "Reset Content",
    206: "Partial Content",
    300: "Multiple Choices",
    301: "Moved Permanently",
    302: "Found",
    303: "See Other",
    304: "Not Modified",
    307: "Temporary Redirect",
    308: "Permanent Redirect",
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    406: "Not Acceptable",
    408: "Request Timeout",
    409: "Conflict",
    410: "Gone",
    411: "Length Required",
    412: "Precondition Failed",
    413: "Payload Too Large",
    414: "URI Too Long",
    415: "Unsupported Media Type",
    416: "Range Not Satisfiable",
    421: "Misdirected Request",
    422: "Unprocessable Entity",
    425: "Too Early",
    426: "Upgrade Required",
    429: "Too Many Requests",
    431: "Request Header Fields Too Large",
    500: "Internal Server Error",
    501: "Not Implemented",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Timeout",
    505: "HTTP Version Not Supported",
}


def reason_phrase(code: int) -> str:
    """Reason phrase for any integer status code."""
    return _STATUS_PHRASES.get(int(code), "Unknown")
