"""
=============================================================================
HTTP PROTOCOL COMPONENTS
=============================================================================

    request.py       HTTPRequest, TLSInfo, RequestParser
    response.py      HTTPResponse, ResponseBuilder, helpers
    router.py        Ordered (predicate, handler) routing table
    status_codes.py  HTTPStatus enum and reason phrases

=============================================================================
"""

from .request import HTTPRequest, TLSInfo, RequestParser, HTTPParseError, parse_request
from .response import (
    HTTPResponse,
    ResponseBuilder,
    format_http_date,
    text_response,
    error_response,
)
from .router import Router, Route, exact, prefix, always
from .status_codes import HTTPStatus, reason_phrase

__all__ = [
    # Requests
    "HTTPRequest",
    "TLSInfo",
    "RequestParser",
    "HTTPParseError",
    "parse_request",

    # Responses
    "HTTPResponse",
    "ResponseBuilder",
    "format_http_date",
    "text_response",
    "error_response",

    # Routing
    "Router",
    "Route",
    "exact",
    "prefix",
    "always",

    # Status codes
    "HTTPStatus",
    "reason_phrase",
]
