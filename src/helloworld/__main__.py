"""
=============================================================================
HELLOWORLD CLI ENTRY POINT
=============================================================================

    python -m helloworld                          # 0.0.0.0:8080
    python -m helloworld --port 9000
    python -m helloworld --cert-dir /etc/helloworld --alpn h2 --alpn http/1.1
    python -m helloworld --routes                 # print the routing table

Configuration is read from HELLOWORLD_* environment variables first
(see ServerConfig.from_env); command-line flags override it.

Exit status:

    0   stopped by SIGINT/SIGTERM
    1   listener could not be established, or the server failed
    2   invalid arguments or configuration

ALPN: only "http/1.1" is offered by default. The server speaks HTTP/1.1
framing only, so "h2" is never advertised unless --alpn asks for it.

=============================================================================
"""

import argparse
import logging
import sys
from typing import Optional, Sequence

from . import __version__
from .config import ServerConfig
from .server import create_app


logger = logging.getLogger("helloworld")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="helloworld",
        description="Hello world HTTP server with diagnostics, health and ACME passthrough",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m helloworld                        # Run with defaults
  python -m helloworld --port 3000            # Custom port
  python -m helloworld --cert-dir ./certs     # Look for certificates there
  python -m helloworld --no-plaintext         # TLS only when a cert loads
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--host", "-H", help="Host to bind to (default: 0.0.0.0)")
    parser.add_argument("--port", "-p", type=int, help="Port to listen on (default: 8080)")
    parser.add_argument("--timeout", type=float, help="Socket timeout in seconds (default: 30)")

    # ─────────────────────────────────────────────────────────────────────
    # CONTENT / PROXY
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--greeting", help="Body of the catch-all response")
    parser.add_argument(
        "--proxy-upstream",
        help="Host[:port] that /.well-known/ requests are forwarded to (default: ws.atonline.com)",
    )
    parser.add_argument("--proxy-timeout", type=float, help="Upstream timeout in seconds")

    # ─────────────────────────────────────────────────────────────────────
    # TLS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--cert-dir", help="Directory holding the certificate pairs (default: .)")
    parser.add_argument(
        "--alpn",
        action="append",
        metavar="PROTOCOL",
        help=(
            "ALPN protocol to offer; repeat for several (default: http/1.1). "
            "h2 is not offered by default: only HTTP/1.1 framing is spoken"
        ),
    )
    parser.add_argument(
        "--no-plaintext",
        action="store_true",
        help="Refuse non-TLS connections when a certificate is loaded",
    )

    # ─────────────────────────────────────────────────────────────────────
    # DIAGNOSTICS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--trace-allocations",
        action="store_true",
        help="Enable tracemalloc so /_info reports object allocator figures",
    )
    parser.add_argument("--routes", action="store_true", help="Print the routing table and exit")
    parser.add_argument("--version", "-v", action="version", version=f"helloworld {__version__}")

    return parser


def config_from_args(args: argparse.Namespace) -> ServerConfig:
    """Environment configuration with command-line overrides applied."""
    config = ServerConfig.from_env()

    overrides = {
        "host": args.host,
        "port": args.port,
        "timeout": args.timeout,
        "greeting": args.greeting,
        "proxy_upstream": args.proxy_upstream,
        "proxy_timeout": args.proxy_timeout,
        "cert_dir": args.cert_dir,
        "alpn_protocols": args.alpn,
        "log_level": args.log_level,
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(config, name, value)

    if args.no_plaintext:
        config.allow_plaintext = False
    if args.trace_allocations:
        config.trace_allocations = True

    return config


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        server = create_app(config_from_args(args))
    except ValueError as e:
        parser.error(str(e))

    if args.routes:
        server.router.print_routes()
        return 0

    try:
        server.run()
    except OSError as e:
        logger.critical(f"Server on {server.config.host}:{server.config.port} failed: {e}")
        return 1
    except Exception:
        logger.critical("Server failed", exc_info=True)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
