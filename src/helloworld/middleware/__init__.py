"""
Middleware pipeline and the access log middleware.

    from helloworld.middleware import MiddlewarePipeline, LoggingMiddleware

    pipeline = MiddlewarePipeline().add(LoggingMiddleware(skip_paths=["/_health"]))
    handler = pipeline.wrap(router.handle)
"""

from .base import Middleware, MiddlewarePipeline, NextHandler
from .logging import LoggingMiddleware, RequestLog

__all__ = [
    "Middleware",
    "MiddlewarePipeline",
    "NextHandler",
    "LoggingMiddleware",
    "RequestLog",
]
