"""
=============================================================================
REQUEST ROUTER
=============================================================================

Maps every inbound request to exactly one handler.

=============================================================================
THE ROUTING TABLE
=============================================================================

Routes are an ordered list of (predicate, handler) pairs. The first route
whose predicate accepts the request path wins:

    ┌─────┬──────────────────────────┬─────────────────────────────────┐
    │  #  │ Predicate                │ Handler                         │
    ├─────┼──────────────────────────┼─────────────────────────────────┤
    │  1  │ exact("/_info")          │ diagnostics report              │
    │  2  │ exact("/_health")        │ "accepting"                     │
    │  3  │ prefix("/.well-known/")  │ reverse proxy (ACME HTTP-01)    │
    │  4  │ always()                 │ greeting                        │
    └─────┴──────────────────────────┴─────────────────────────────────┘

Predicates look at the path only. The method is never considered, so there
is no 405; the last route accepts everything, so there is no 404.

When two routes overlap, registration order decides. Nothing is re-sorted
by specificity.

=============================================================================
"""

from dataclasses import dataclass
from typing import Callable, Optional, List

from .request import HTTPRequest
from .response import HTTPResponse


# Handler: takes a request, returns a response.
Handler = Callable[[HTTPRequest], HTTPResponse]

# Predicate: takes a decoded request path, says whether the route applies.
Predicate = Callable[[str], bool]


# =============================================================================
# PREDICATES
# =============================================================================

def exact(path: str) -> Predicate:
    """Match one path exactly. "/_info/" does not match exact("/_info")."""
    def predicate(candidate: str) -> bool:
        return candidate == path
    predicate.__qualname__ = f"exact({path!r})"
    return predicate


def prefix(value: str) -> Predicate:
    """Match every path starting with value."""
    def predicate(candidate: str) -> bool:
        return candidate.startswith(value)
    predicate.__qualname__ = f"prefix({value!r})"
    return predicate


def always() -> Predicate:
    """Match every path. Used for the fallback route."""
    def predicate(candidate: str) -> bool:
        return True
    predicate.__qualname__ = "always()"
    return predicate


@dataclass(frozen=True)
class Route:
    """
    One entry of the routing table.

    Attributes:
        predicate: Decides whether this route handles a path.
        handler: Produces the response.
        name: Label used in logs and in print_routes().
    """

    predicate: Predicate
    handler: Handler
    name: str = ""

    def matches(self, path: str) -> bool:
        return self.predicate(path)


class Router:
    """
    Ordered first-match-wins router.

    ==========================================================================
    USAGE
    ==========================================================================

        router = Router()
        router.add(exact("/_health"), health.handle, name="health")
        router.add(prefix("/.well-known/"), proxy.handle, name="acme")
        router.add(always(), greeting.handle, name="greeting")

        response = router.handle(request)

    Or with the decorator form:

        @router.route(exact("/_health"))
        def health(request):
            return text_response("accepting")

    ==========================================================================
    """

    def __init__(self):
        self._routes: List[Route] = []

    @property
    def routes(self) -> tuple[Route, ...]:
        return tuple(self._routes)

    def add(self, predicate: Predicate, handler: Handler, name: str = "") -> Route:
        """
        Append a route to the end of the table.

        Args:
            predicate: Path predicate (see exact, prefix, always).
            handler: Handler for matching requests.
            name: Optional label, defaults to the predicate's qualname.

        Returns:
            The registered Route.
        """
        route = Route(
            predicate=predicate,
            handler=handler,
            name=name or getattr(predicate, "__qualname__", repr(predicate)),
        )
        self._routes.append(route)
        return route

    def route(self, predicate: Predicate, name: str = "") -> Callable[[Handler], Handler]:
        """Decorator form of add()."""
        def decorator(handler: Handler) -> Handler:
            self.add(predicate, handler, name)
            return handler
        return decorator

    def match(self, path: str) -> Optional[Route]:
        """
        Find the route for a path.

        Returns:
            The first route whose predicate accepts path, or None.
        """
        for route in self._routes:
            if route.matches(path):
                return route
        return None

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """
        Dispatch a request to its route's handler.

        Raises:
            LookupError: If no route matches. A router with an always()
                route at the end never raises.
        """
        route = self.match(request.path)
        if route is None:
            raise LookupError(f"No route matches {request.path!r}")
        return route.handler(request)

    def print_routes(self) -> None:
        """Print the routing table in priority order."""
        print("Routes:")
        for index, route in enumerate(self._routes, start=1):
            matcher = getattr(route.predicate, "__qualname__", "")
            print(f"  {index}. {route.name:<20} {matcher}")
        print()
