"""
=============================================================================
HEALTH CHECK HANDLER (/_health)
=============================================================================

Load balancers and orchestrators poll this path to decide whether to send
traffic here. A process that can answer at all is accepting connections,
so the answer is always the same:

    HTTP/1.1 200 OK
    Content-Type: text/plain
    Cache-Control: no-store, no-cache, must-revalidate

    accepting

Health checkers poll every few seconds; the access log can skip this path (see
LoggingMiddleware.skip_paths).

=============================================================================
"""

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ResponseBuilder


HEALTH_BODY = "accepting"


class HealthHandler:
    """Answers health checks with a fixed body."""

    def __init__(self, body: str = HEALTH_BODY):
        self.body = body

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        return (ResponseBuilder()
            .text(self.body, content_type="text/plain")
            .no_cache()
            .build())


def health_check() -> HealthHandler:
    """Factory for the standard health handler."""
    return HealthHandler()
