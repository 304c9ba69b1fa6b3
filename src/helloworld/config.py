"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Every tunable of the server lives on one dataclass.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m helloworld --port 3000                          │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── HELLOWORLD_PORT=3000 python -m helloworld                 │
    │                                                                      │
    │   3. Defaults (this file)                                           │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Values are validated once at startup by ServerConfig.validate(); a bad
value raises ValueError before any socket is opened.

=============================================================================
"""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from . import __version__


DEFAULT_GREETING = "Hello world v3\n"

DEFAULT_CERT_PAIRS: tuple[tuple[str, str], ...] = (
    ("public_key.pem", "public_key.key"),
    ("internal_key.pem", "internal_key.key"),
)

DEFAULT_PROXY_UPSTREAM = "ws.atonline.com"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ServerConfig:
    """
    Configuration for the helloworld server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, buffer_size, timeout

    HTTP SETTINGS
    - keep_alive, keep_alive_timeout, max_request_size, server_name

    CONTENT
    - greeting

    TLS
    - cert_dir, cert_pairs, alpn_protocols, allow_plaintext

    PROXY
    - proxy_upstream, proxy_timeout

    DIAGNOSTICS / LOGGING
    - trace_allocations, log_level

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """Address to bind. The default listens on every interface."""

    port: int = 8080
    """
    Port to listen on. Port 0 asks the OS for a free port; the bound
    port is then available from HelloWorldServer.address.
    """

    backlog: int = 128
    """Maximum number of queued connections."""

    buffer_size: int = 8192
    """Bytes read per recv() call."""

    timeout: Optional[float] = 30.0
    """Socket timeout for the first request on a connection (seconds)."""

    # ─────────────────────────────────────────────────────────────────────
    # HTTP SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    keep_alive: bool = True
    """Allow several requests on one connection."""

    keep_alive_timeout: float = 5.0
    """Idle time allowed between requests on a kept-alive connection."""

    max_request_size: int = 10 * 1024 * 1024  # 10 MB
    """Largest request (headers plus body) accepted, in bytes."""

    server_name: str = f"helloworld/{__version__}"
    """Value of the Server response header."""

    # ─────────────────────────────────────────────────────────────────────
    # CONTENT
    # ─────────────────────────────────────────────────────────────────────

    greeting: str = DEFAULT_GREETING
    """Body returned for every path not claimed by another route."""

    # ─────────────────────────────────────────────────────────────────────
    # TLS
    # ─────────────────────────────────────────────────────────────────────

    cert_dir: str = "."
    """Directory the certificate pairs are resolved against."""

    cert_pairs: tuple[tuple[str, str], ...] = DEFAULT_CERT_PAIRS
    """
    (certificate, private key) file names, tried in order. The first
    pair that loads is used; if none does the server stays plaintext.
    """

    alpn_protocols: list[str] = field(default_factory=lambda: ["http/1.1"])
    """
    Protocols offered in ALPN. Only HTTP/1.1 framing is spoken, so "h2"
    is not offered unless explicitly listed.
    """

    allow_plaintext: bool = True
    """
    When TLS is active, still serve connections whose first byte is not
    a TLS handshake record.
    """

    # ─────────────────────────────────────────────────────────────────────
    # PROXY
    # ─────────────────────────────────────────────────────────────────────

    proxy_upstream: str = DEFAULT_PROXY_UPSTREAM
    """Host (optionally host:port) that /.well-known/ requests go to."""

    proxy_timeout: Optional[float] = None
    """Upstream socket timeout; None uses the library default."""

    # ─────────────────────────────────────────────────────────────────────
    # DIAGNOSTICS / LOGGING
    # ─────────────────────────────────────────────────────────────────────

    trace_allocations: bool = False
    """Start tracemalloc so the object allocator figures are populated."""

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        HELLOWORLD_HOST            Bind address       (default: 0.0.0.0)
        HELLOWORLD_PORT            Port               (default: 8080)
        HELLOWORLD_GREETING        Catch-all body     (default: Hello world v3)
        HELLOWORLD_CERT_DIR        Certificate dir    (default: .)
        HELLOWORLD_PROXY_UPSTREAM  Proxy upstream     (default: ws.atonline.com)
        HELLOWORLD_TIMEOUT         Socket timeout     (default: 30)
        HELLOWORLD_LOG_LEVEL       Logging level      (default: INFO)

        =====================================================================
        """
        env = os.environ if environ is None else environ
        return cls(
            host=env.get("HELLOWORLD_HOST", "0.0.0.0"),
            port=int(env.get("HELLOWORLD_PORT", "8080")),
            greeting=env.get("HELLOWORLD_GREETING", DEFAULT_GREETING),
            cert_dir=env.get("HELLOWORLD_CERT_DIR", "."),
            proxy_upstream=env.get("HELLOWORLD_PROXY_UPSTREAM", DEFAULT_PROXY_UPSTREAM),
            timeout=float(env.get("HELLOWORLD_TIMEOUT", "30")),
            log_level=env.get("HELLOWORLD_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: On the first invalid value found.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.keep_alive_timeout <= 0:
            raise ValueError("keep_alive_timeout must be > 0")

        if self.max_request_size < self.buffer_size:
            raise ValueError("max_request_size must be >= buffer_size")

        if self.proxy_timeout is not None and self.proxy_timeout <= 0:
            raise ValueError("proxy_timeout must be > 0")

        if not self.proxy_upstream:
            raise ValueError("proxy_upstream must not be empty")

        for pair in self.cert_pairs:
            if len(pair) != 2 or not all(pair):
                raise ValueError(f"Invalid certificate pair: {pair!r}")

        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(
                f"Invalid log_level: {self.log_level}. Must be one of {', '.join(LOG_LEVELS)}."
            )


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. Typed configuration with a dataclass
# 2. HELLOWORLD_* environment variables for deployments
# 3. Validation at startup (fail-fast)
# =============================================================================
