"""
=============================================================================
LOW-LEVEL TCP SOCKET SERVER
=============================================================================

Owns the listening socket: create, bind, listen, accept, close. Each
accepted socket is wrapped in a Connection and handed to a callback; what
happens to it afterwards (TLS, HTTP, threads) is the caller's business.

=============================================================================
SOCKET LIFECYCLE (Server Side)
=============================================================================

    1. socket()    Create the listening socket
    2. bind()      Reserve host:port          ← fails if the port is taken
    3. listen()    Start queueing connections (backlog)
    4. accept()    One new socket per client
    5. close()     Release the listening socket on shutdown

                    ┌───────────────────────┐
                    │   Listening Socket    │ ◄── Created once at startup
                    │   0.0.0.0:8080        │     Never sends/receives data
                    └───────────┬───────────┘
                                │ accept()
              ┌─────────────────┼─────────────────┐
              ▼                 ▼                 ▼
        ┌───────────┐     ┌───────────┐     ┌───────────┐
        │ Client #1 │     │ Client #2 │     │ Client #3 │
        └───────────┘     └───────────┘     └───────────┘

=============================================================================
SIGNAL HANDLING
=============================================================================

SIGINT (Ctrl+C) and SIGTERM (docker stop, systemd) stop the accept loop
instead of killing the process. Python only allows signal handlers in the
main thread, so a server started from any other thread (tests, embedding)
leaves signal handling alone.

=============================================================================
ACCEPT ERRORS
=============================================================================

Running out of file descriptors or buffers (EMFILE, ENFILE, ENOBUFS,
ENOMEM) or a client aborting in the backlog (ECONNABORTED) is survivable:
the loop sleeps 5ms, doubling up to 1s, and tries again. Any other error
while running propagates out of start().

=============================================================================
"""

import errno
import socket
import signal
import logging
import threading
import time
from typing import Optional, Callable, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)

# accept() failures that clear up on their own (descriptor or buffer
# exhaustion, a client that gave up in the backlog). Anything else stops
# the server.
TRANSIENT_ACCEPT_ERRORS = frozenset({
    errno.EMFILE,
    errno.ENFILE,
    errno.ECONNABORTED,
    errno.ENOBUFS,
    errno.ENOMEM,
})

MIN_ACCEPT_DELAY = 0.005
MAX_ACCEPT_DELAY = 1.0


class SocketServer:
    """
    Low-level TCP socket server.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SocketServer Internals                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    start()           Main entry point                                │
    │        │                                                             │
    │        ├──► _create_socket()   SO_REUSEADDR, TCP_NODELAY             │
    │        ├──► bind()             OSError propagates to the caller      │
    │        ├──► listen()                                                 │
    │        ├──► _setup_signals()   main thread only                      │
    │        ├──► ready.set()                                              │
    │        │                                                             │
    │        └──► _accept_loop()     blocks until shutdown()               │
    │                                                                      │
    │    shutdown()        Stop the accept loop (idempotent)               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Usage:
        def handle_connection(conn: Connection):
            ...

        server = SocketServer(config)
        server.start(handle_connection)  # Blocks until shutdown
    """

    # How often the accept loop wakes up to check for shutdown.
    poll_interval = 0.5

    def __init__(self, config: ServerConfig):
        self.config = config

        self._socket: Optional[socket.socket] = None
        self._running = False
        self._bound_address: Optional[Tuple[str, int]] = None

        self._ready_event = threading.Event()

        self._original_handlers: dict = {}

    @property
    def address(self) -> Tuple[str, int]:
        """
        The (host, port) the server listens on.

        After bind this is the real address, so a configured port of 0
        reports the port the OS picked.
        """
        if self._bound_address is not None:
            return self._bound_address
        return (self.config.host, self.config.port)

    def _create_socket(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.config.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)

        # Allow an immediate restart while old connections sit in TIME_WAIT.
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # Small responses go out immediately.
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        # accept() wakes up periodically so shutdown() is noticed.
        sock.settimeout(self.poll_interval)

        return sock

    def _setup_signals(self):
        if threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            self.shutdown()

        self._original_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, shutdown_handler)
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def start(self, connection_handler: Callable[[Connection], None]):
        """
        Bind, listen and accept connections until shutdown() is called.

        Args:
            connection_handler: Called with each new Connection, on the
                                accept thread. It must not block.

        Raises:
            OSError: The listener could not be established, or accept()
                     failed with an error that retrying will not fix.
        """
        self._socket = self._create_socket()

        try:
            self._socket.bind((self.config.host, self.config.port))
            self._socket.listen(self.config.backlog)
        except OSError as e:
            logger.error(f"Failed to listen on {self.config.host}:{self.config.port}: {e}")
            self._socket.close()
            self._socket = None
            raise

        self._bound_address = self._socket.getsockname()[:2]
        self._running = True

        self._setup_signals()

        host, port = self.address
        logger.info(f"Server listening on {host}:{port}")
        self._ready_event.set()

        try:
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        delay = 0.0

        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if not self._running:
                    break
                if e.errno in TRANSIENT_ACCEPT_ERRORS:
                    delay = min(delay * 2, MAX_ACCEPT_DELAY) if delay else MIN_ACCEPT_DELAY
                    logger.warning(f"Accept error: {e}; retrying in {delay * 1000:.0f}ms")
                    time.sleep(delay)
                    continue
                logger.error(f"Accept error: {e}")
                raise

            delay = 0.0

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

            conn = Connection(
                socket=client_socket,
                address=(client_address[0], client_address[1]),
                buffer_size=self.config.buffer_size,
                timeout=self.config.timeout,
                keep_alive_timeout=self.config.keep_alive_timeout,
                max_request_size=self.config.max_request_size,
            )

            connection_handler(conn)

    def shutdown(self):
        """Stop accepting connections. Safe to call from any thread, twice."""
        if self._running:
            logger.info("Shutting down socket server...")
        self._running = False

    def _cleanup(self):
        self._restore_signals()

        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None

        self._ready_event.clear()
        logger.info("Socket server stopped")

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the socket is listening. False on timeout."""
        return self._ready_event.wait(timeout)
