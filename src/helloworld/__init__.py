"""
=============================================================================
HELLOWORLD SERVER
=============================================================================

A small HTTP server that greets every visitor, answers health checks,
reports on its own process, and passes ACME challenges through to an
upstream.

=============================================================================
ROUTES
=============================================================================

    ┌──────────────────┬──────────────────────────────────────────────────┐
    │ Path             │ Behaviour                                        │
    ├──────────────────┼──────────────────────────────────────────────────┤
    │ /_info           │ Plain-text diagnostics report                    │
    │ /_health         │ "accepting"                                      │
    │ /.well-known/*   │ Forwarded to the proxy upstream over plain HTTP  │
    │ anything else    │ The greeting ("Hello world v3")                  │
    └──────────────────┴──────────────────────────────────────────────────┘

Routes are checked top to bottom and the first match wins. Every method
is accepted on every route.

=============================================================================
QUICK START
=============================================================================

    $ python -m helloworld                 # plaintext on 0.0.0.0:8080
    $ python -m helloworld --cert-dir /etc/helloworld

    from helloworld import HelloWorldServer, ServerConfig

    server = HelloWorldServer(ServerConfig(port=9000))
    server.run()

If public_key.pem/public_key.key (or internal_key.pem/internal_key.key)
exist in the certificate directory, the same port also accepts TLS.

=============================================================================
"""

__version__ = "1.0.0"

from .server import HelloWorldServer
from .config import ServerConfig

__all__ = ["HelloWorldServer", "ServerConfig", "__version__"]
