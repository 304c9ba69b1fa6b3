"""
=============================================================================
HELLOWORLD SERVER
=============================================================================

Ties the components together:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │                     ┌──────────────────────┐                         │
    │                     │   HelloWorldServer   │                         │
    │                     └──────────┬───────────┘                         │
    │            ┌───────────────────┼───────────────────┐                 │
    │            ▼                   ▼                   ▼                 │
    │    ┌──────────────┐    ┌──────────────┐    ┌──────────────┐          │
    │    │ SocketServer │    │  TLSSetup    │    │    Router    │          │
    │    │  (accept)    │    │ (optional)   │    │ (4 routes)   │          │
    │    └──────┬───────┘    └──────────────┘    └──────────────┘          │
    │           ▼                                                          │
    │    ┌──────────────┐  one thread per connection                       │
    │    │  Connection  │  negotiate → read → parse → route → write        │
    │    └──────────────┘                                                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
ROUTING TABLE
=============================================================================

    1. /_info            exact   → InfoHandler
    2. /_health          exact   → HealthHandler
    3. /.well-known/     prefix  → ProxyHandler
    4. *                 always  → GreetingHandler

First match wins; every method matches. There is no 404.

=============================================================================
REQUEST FAILURES
=============================================================================

    Malformed request        → 400/413/505, connection closed
    First request too slow   → 408, connection closed
    Handler raised           → 500, logged with traceback
    Upstream unreachable     → 502 (from ProxyHandler)

=============================================================================
"""

import logging
import threading
import tracemalloc
from typing import Optional, Callable

from .buildinfo import BuildInfo
from .config import ServerConfig
from .context import ServerContext
from .core import SocketServer, Connection
from .handlers import GreetingHandler, InfoHandler, ProxyHandler, health_check
from .http import (
    HTTPRequest, RequestParser, HTTPParseError,
    HTTPResponse, HTTPStatus, Router,
    error_response, exact, prefix, always,
)
from .middleware import MiddlewarePipeline, Middleware, LoggingMiddleware
from .runtime import GCMonitor
from .tls import TLSSetup, load_tls


logger = logging.getLogger(__name__)


def build_router(config: ServerConfig, context: ServerContext) -> Router:
    """The four routes, in priority order."""
    router = Router()
    router.add(exact("/_info"), InfoHandler(context).handle, name="info")
    router.add(exact("/_health"), health_check().handle, name="health")
    router.add(
        prefix("/.well-known/"),
        ProxyHandler(config.proxy_upstream, config.proxy_timeout).handle,
        name="well-known-proxy",
    )
    router.add(always(), GreetingHandler(context.greeting).handle, name="greeting")
    return router


class HelloWorldServer:
    """
    The helloworld HTTP server.

        server = HelloWorldServer(ServerConfig(port=8080))
        server.run()            # blocks until SIGINT/SIGTERM or stop()

    From another thread (tests):

        thread = threading.Thread(target=server.run, daemon=True)
        thread.start()
        server.wait_until_ready(5)
        host, port = server.address
        ...
        server.stop()
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        build: Optional[BuildInfo] = None,
    ):
        """
        Args:
            config: Server configuration. Defaults are used if omitted.
            build: Build identity. Read from HELLOWORLD_* variables if omitted.

        Raises:
            ValueError: Invalid configuration.
        """
        self.config = config or ServerConfig()
        self.config.validate()

        self._socket_server = SocketServer(self.config)
        self._parser = RequestParser(max_request_size=self.config.max_request_size)

        self._gc_monitor = GCMonitor()
        self.context = ServerContext(
            build=build or BuildInfo.from_env(),
            greeting=self.config.greeting,
            gc_monitor=self._gc_monitor,
        )

        self._router = build_router(self.config, self.context)
        self._middleware = MiddlewarePipeline()
        self._handler: Optional[Callable[[HTTPRequest], HTTPResponse]] = None

        self._tls: Optional[TLSSetup] = None
        self._running = False

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    def use(self, middleware: Middleware) -> "HelloWorldServer":
        """Add middleware. The first added is the outermost."""
        self._middleware.add(middleware)
        return self

    @property
    def router(self) -> Router:
        return self._router

    @property
    def tls(self) -> Optional[TLSSetup]:
        """The loaded TLS setup, None while plaintext-only."""
        return self._tls

    @property
    def address(self) -> tuple[str, int]:
        return self._socket_server.address

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self):
        """
        Start the server (blocking).

        Raises:
            OSError: The listener could not be established.
        """
        self._setup_logging()

        if self.config.trace_allocations and not tracemalloc.is_tracing():
            tracemalloc.start()
        self._gc_monitor.install()

        self._tls = load_tls(
            self.config.cert_dir,
            self.config.cert_pairs,
            self.config.alpn_protocols,
        )
        if self._tls is None:
            logger.info("No usable certificate found, serving plaintext only")

        self._handler = self._middleware.wrap(self._router.handle)
        self._running = True

        logger.info(
            f"Starting helloworld {self.context.build.describe()} "
            f"on {self.config.host}:{self.config.port}"
        )

        try:
            self._socket_server.start(self._handle_connection)
        finally:
            self._shutdown()

    def stop(self):
        """Stop accepting connections; run() returns shortly after."""
        self._socket_server.shutdown()

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the listener is up. False on timeout."""
        return self._socket_server.wait_until_ready(timeout)

    def _setup_logging(self):
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("helloworld").setLevel(level)

    def _shutdown(self):
        self._running = False
        self._gc_monitor.uninstall()
        logger.info("Server stopped")

    # =========================================================================
    # REQUEST HANDLING
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """Serve the connection on its own thread."""
        thread = threading.Thread(
            target=self._process_connection,
            args=(conn,),
            name=f"conn-{conn.id}",
            daemon=True,
        )
        thread.start()

    def _process_connection(self, conn: Connection):
        """
        Connection loop (runs in the connection's thread).

        1. Negotiate TLS or plaintext
        2. Read and parse a request
        3. Dispatch through middleware + router
        4. Send the response
        5. Repeat while keep-alive holds
        """
        with conn:
            if not conn.negotiate(self._tls, self.config.allow_plaintext):
                return

            while self._running:
                try:
                    raw_request = conn.read_request()
                    if raw_request is None:
                        break
                    request = self._parser.parse(raw_request, conn.address, tls=conn.tls)
                except HTTPParseError as e:
                    self._send_error(conn, e.status_code, str(e))
                    break
                except TimeoutError:
                    self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
                    break
                except OSError as e:
                    logger.debug(f"[{conn.id}] Read failed: {e}")
                    break

                conn.state = conn.state.PROCESSING
                response = self.dispatch(request)

                keep_alive = (
                    request.is_keep_alive
                    and self.config.keep_alive
                    and response.headers.get("Connection", "").lower() != "close"
                )
                if keep_alive:
                    response.headers.setdefault("Connection", "keep-alive")
                    response.headers.setdefault(
                        "Keep-Alive",
                        f"timeout={int(self.config.keep_alive_timeout)}"
                    )
                else:
                    response.headers["Connection"] = "close"

                response_bytes = response.to_bytes(
                    self.config.server_name,
                    include_body=request.method != "HEAD",
                )
                if not conn.send_response(response_bytes):
                    break

                if not keep_alive:
                    break

                conn.set_keep_alive()

    def dispatch(self, request: HTTPRequest) -> HTTPResponse:
        """
        Run one request through middleware and router.

        Never raises: a failing handler becomes a 500.
        """
        handler = self._handler or self._middleware.wrap(self._router.handle)
        try:
            return handler(request)
        except Exception as e:
            logger.exception(f"Handler error for {request.method} {request.path}: {e}")
            return error_response(HTTPStatus.INTERNAL_SERVER_ERROR)

    def _send_error(self, conn: Connection, status: int, message: str):
        response = error_response(HTTPStatus(status), message)
        conn.send_response(response.to_bytes(self.config.server_name))


def create_app(config: Optional[ServerConfig] = None) -> HelloWorldServer:
    """
    Build a server with the standard middleware (access log, health
    checks not logged).
    """
    server = HelloWorldServer(config)
    server.use(LoggingMiddleware(skip_paths=["/_health"]))
    return server


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. Startup: config validation, context, router, TLS, listener
# 2. Request flow: Accept → Negotiate → Parse → Middleware → Route → Write
# 3. Connections: one thread each, keep-alive, HEAD without body
# 4. Shutdown: stop() or SIGINT/SIGTERM
# =============================================================================
