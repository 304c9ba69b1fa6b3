"""
=============================================================================
ACCESS LOG MIDDLEWARE
=============================================================================

One line per request on the "helloworld.access" logger:

    ┌─────────────────────────────────────────────────────────────────────┐
    │ 192.0.2.1 - - [19/Oct/2026:10:55:36 +0000] "GET /_info" 200 1234    │
    │ 5.21ms tls                                                          │
    │ ─────────────────────────────────────────────────────────────────── │
    │ IP     Timestamp                 Method/Path  Status Size Duration  │
    │                                               Transport             │
    └─────────────────────────────────────────────────────────────────────┘

The access logger can be routed separately from the application loggers:

    logging.getLogger("helloworld.access").addHandler(file_handler)

=============================================================================
"""

import time
import json
import uuid
import logging
from typing import Optional
from dataclasses import dataclass

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger("helloworld.access")


@dataclass
class RequestLog:
    """One access log entry."""

    request_id: str
    method: str
    path: str
    client_ip: str
    user_agent: str
    status_code: int
    content_length: int
    duration_ms: float
    timestamp: str
    transport: str

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "method": self.method,
            "path": self.path,
            "client_ip": self.client_ip,
            "user_agent": self.user_agent,
            "status_code": self.status_code,
            "content_length": self.content_length,
            "duration_ms": round(self.duration_ms, 2),
            "timestamp": self.timestamp,
            "transport": self.transport,
        }

    def to_text(self) -> str:
        """Apache-style line with duration and transport appended."""
        return (
            f'{self.client_ip} - - [{self.timestamp}] '
            f'"{self.method} {self.path}" {self.status_code} '
            f'{self.content_length} {self.duration_ms:.2f}ms {self.transport}'
        )


class LoggingMiddleware(Middleware):
    """
    Request logging middleware. Add it first so it times everything.

    Args:
        log_format: "text" (Apache style) or "json".
        include_request_id: Add an X-Request-ID header to responses. Off
                            by default so proxied responses are relayed
                            unchanged.
        log_level: Level the access lines are logged at.
        skip_paths: Paths not logged (health checks, for instance).
    """

    def __init__(
        self,
        log_format: str = "text",
        include_request_id: bool = False,
        log_level: int = logging.INFO,
        skip_paths: Optional[list[str]] = None,
    ):
        self.log_format = log_format
        self.include_request_id = include_request_id
        self.log_level = log_level
        self.skip_paths = set(skip_paths or [])

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        request_id = str(uuid.uuid4())[:8]
        start_time = time.perf_counter()

        try:
            response = next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"Request failed: {request.method} {request.path} "
                f"- {type(e).__name__}: {e} ({duration_ms:.2f}ms)"
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000

        if request.path in self.skip_paths:
            return response

        log_entry = RequestLog(
            request_id=request_id,
            method=request.method,
            path=request.target,
            client_ip=request.client_address[0],
            user_agent=request.user_agent or "-",
            status_code=int(response.status),
            content_length=len(response.body),
            duration_ms=duration_ms,
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
            transport="tls" if request.is_tls else "plain",
        )

        if self.log_format == "json":
            logger.log(self.log_level, json.dumps(log_entry.to_dict()))
        else:
            logger.log(self.log_level, log_entry.to_text())

        if self.include_request_id:
            response.headers["X-Request-ID"] = request_id

        return response
