"""
Catch-all greeting handler.

Every request the other routes do not claim ends up here, whatever its
method or path, and gets the configured greeting with status 200.
"""

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, text_response


class GreetingHandler:
    """Returns the same text/plain greeting for every request."""

    def __init__(self, greeting: str):
        self.greeting = greeting

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        return text_response(self.greeting)
