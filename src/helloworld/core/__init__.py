"""
Networking core: the listening socket and per-client connections.
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState

__all__ = ["SocketServer", "Connection", "ConnectionState"]
