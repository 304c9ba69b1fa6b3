"""
Unit tests for the listener's accept loop.
"""

import errno
import logging
import socket

import pytest

from helloworld.config import ServerConfig
from helloworld.core import socket_server
from helloworld.core.socket_server import SocketServer


class ScriptedListener:
    """Stands in for the listening socket: raises or returns in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)

    def accept(self):
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def sleeps(monkeypatch) -> list:
    delays = []
    monkeypatch.setattr(socket_server.time, "sleep", delays.append)
    return delays


@pytest.fixture
def pair():
    server_side, client_side = socket.socketpair()
    yield server_side, client_side
    client_side.close()
    server_side.close()


def running_server(listener: ScriptedListener) -> SocketServer:
    server = SocketServer(ServerConfig(host="127.0.0.1", port=0))
    server._socket = listener
    server._running = True
    return server


class TestAcceptLoop:
    """Tests for SocketServer._accept_loop()."""

    def test_transient_errors_back_off_then_recover(self, pair, sleeps):
        server_side, _ = pair
        listener = ScriptedListener(
            OSError(errno.EMFILE, "Too many open files"),
            OSError(errno.ENFILE, "Too many open files in system"),
            OSError(errno.ECONNABORTED, "Software caused connection abort"),
            (server_side, ("192.0.2.9", 5555)),
        )
        server = running_server(listener)
        accepted = []

        def handler(conn):
            accepted.append(conn)
            server.shutdown()

        server._accept_loop(handler)

        assert sleeps == [0.005, 0.01, 0.02]
        assert [conn.address for conn in accepted] == [("192.0.2.9", 5555)]

    def test_backoff_is_capped(self, sleeps):
        errors = [OSError(errno.ENOBUFS, "No buffer space") for _ in range(12)]
        server = running_server(ScriptedListener(*errors, OSError(errno.EBADF, "Bad file descriptor")))

        with pytest.raises(OSError):
            server._accept_loop(lambda conn: None)

        assert sleeps[0] == 0.005
        assert max(sleeps) == 1.0
        assert sleeps[-1] == 1.0

    def test_backoff_resets_after_success(self, pair, sleeps):
        server_side, _ = pair
        listener = ScriptedListener(
            OSError(errno.ENOMEM, "Cannot allocate memory"),
            OSError(errno.ENOMEM, "Cannot allocate memory"),
            (server_side, ("192.0.2.9", 5555)),
            OSError(errno.EMFILE, "Too many open files"),
            OSError(errno.EBADF, "Bad file descriptor"),
        )
        server = running_server(listener)

        with pytest.raises(OSError):
            server._accept_loop(lambda conn: None)

        assert sleeps == [0.005, 0.01, 0.005]

    def test_fatal_error_propagates(self, sleeps, caplog):
        server = running_server(ScriptedListener(OSError(errno.EBADF, "Bad file descriptor")))

        with caplog.at_level(logging.ERROR, logger="helloworld.core.socket_server"):
            with pytest.raises(OSError) as exc_info:
                server._accept_loop(lambda conn: None)

        assert exc_info.value.errno == errno.EBADF
        assert sleeps == []
        assert "Accept error" in caplog.text

    def test_error_during_shutdown_ends_loop(self, sleeps):
        server = running_server(None)

        class ClosingListener:
            def accept(self):
                server.shutdown()
                raise OSError(errno.EBADF, "Bad file descriptor")

        server._socket = ClosingListener()

        server._accept_loop(lambda conn: None)

        assert sleeps == []

    def test_poll_timeout_keeps_looping(self, pair, sleeps):
        server_side, _ = pair
        server = running_server(ScriptedListener(
            socket.timeout(),
            socket.timeout(),
            (server_side, ("192.0.2.9", 5555)),
        ))

        server._accept_loop(lambda conn: server.shutdown())

        assert sleeps == []
