"""
=============================================================================
REQUEST HANDLERS
=============================================================================

One class per route, each exposing handle(request) → HTTPResponse:

    GreetingHandler   catch-all greeting
    HealthHandler     /_health
    InfoHandler       /_info diagnostics report
    ProxyHandler      /.well-known/* passthrough

    from helloworld.handlers import HealthHandler

    router.add(exact("/_health"), HealthHandler().handle, name="health")

=============================================================================
"""

from .greeting import GreetingHandler
from .health import HealthHandler, health_check
from .info import InfoHandler, build_report
from .proxy import ProxyHandler

__all__ = [
    "GreetingHandler",
    "HealthHandler",
    "health_check",
    "InfoHandler",
    "build_report",
    "ProxyHandler",
]
