"""
Unit tests for configuration, build identity, middleware and the CLI.
"""

import logging

import pytest

from helloworld import __version__
from helloworld.__main__ import build_parser, config_from_args, main
from helloworld.buildinfo import BuildInfo, installed_version
from helloworld.config import DEFAULT_CERT_PAIRS, DEFAULT_GREETING, ServerConfig
from helloworld.http.request import HTTPRequest, TLSInfo
from helloworld.http.response import HTTPResponse, text_response
from helloworld.middleware import LoggingMiddleware, Middleware, MiddlewarePipeline


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_defaults(self):
        config = ServerConfig()

        assert config.host == "0.0.0.0"
        assert config.port == 8080
        assert config.greeting == "Hello world v3\n"
        assert config.cert_pairs == (
            ("public_key.pem", "public_key.key"),
            ("internal_key.pem", "internal_key.key"),
        )
        assert config.proxy_upstream == "ws.atonline.com"
        assert config.alpn_protocols == ["http/1.1"]
        assert config.allow_plaintext is True
        assert config.server_name == f"helloworld/{__version__}"
        config.validate()

    def test_from_env(self):
        config = ServerConfig.from_env({
            "HELLOWORLD_HOST": "127.0.0.1",
            "HELLOWORLD_PORT": "9000",
            "HELLOWORLD_GREETING": "hi\n",
            "HELLOWORLD_CERT_DIR": "/etc/certs",
            "HELLOWORLD_PROXY_UPSTREAM": "acme.internal:8081",
            "HELLOWORLD_TIMEOUT": "12.5",
            "HELLOWORLD_LOG_LEVEL": "DEBUG",
        })

        assert config.host == "127.0.0.1"
        assert config.port == 9000
        assert config.greeting == "hi\n"
        assert config.cert_dir == "/etc/certs"
        assert config.proxy_upstream == "acme.internal:8081"
        assert config.timeout == 12.5
        assert config.log_level == "DEBUG"

    def test_from_empty_env(self):
        config = ServerConfig.from_env({})

        assert config.port == 8080
        assert config.greeting == DEFAULT_GREETING
        assert config.cert_pairs == DEFAULT_CERT_PAIRS

    @pytest.mark.parametrize("overrides", [
        {"port": -1},
        {"port": 65536},
        {"backlog": 0},
        {"buffer_size": 10},
        {"timeout": 0},
        {"keep_alive_timeout": -1},
        {"max_request_size": 100},
        {"proxy_timeout": 0},
        {"proxy_upstream": ""},
        {"cert_pairs": (("only.pem",),)},
        {"cert_pairs": (("a.pem", ""),)},
        {"log_level": "LOUD"},
    ])
    def test_validate_rejects(self, overrides: dict):
        config = ServerConfig(**overrides)

        with pytest.raises(ValueError):
            config.validate()

    def test_port_zero_is_valid(self):
        ServerConfig(port=0).validate()


class TestBuildInfo:
    """Tests for BuildInfo."""

    def test_describe(self):
        build = BuildInfo(version="v3.0.1", date="20261019120000", mode="PROD")

        assert build.describe() == "v3.0.1 (build 20261019120000 PROD)"

    def test_from_env(self):
        build = BuildInfo.from_env({
            "HELLOWORLD_GIT_TAG": "v3.1.0",
            "HELLOWORLD_DATE_TAG": "20260301000000",
            "HELLOWORLD_MODE": "PROD",
        })

        assert build == BuildInfo("v3.1.0", "20260301000000", "PROD")

    def test_from_env_defaults(self):
        build = BuildInfo.from_env({"HELLOWORLD_GIT_TAG": ""})

        assert build.version == installed_version()
        assert build.date == "unknown"
        assert build.mode == "DEV"


# =============================================================================
# MIDDLEWARE
# =============================================================================

class Recorder(Middleware):
    def __init__(self, label: str, calls: list):
        self.label = label
        self.calls = calls

    def __call__(self, request, next):
        self.calls.append(f"{self.label}-in")
        response = next(request)
        self.calls.append(f"{self.label}-out")
        return response


class TestMiddlewarePipeline:
    """Tests for MiddlewarePipeline."""

    def test_first_added_is_outermost(self):
        calls = []
        pipeline = MiddlewarePipeline()
        pipeline.add(Recorder("a", calls)).add(Recorder("b", calls))

        def handler(request):
            calls.append("handler")
            return text_response("ok")

        pipeline.wrap(handler)(HTTPRequest(method="GET", path="/"))

        assert calls == ["a-in", "b-in", "handler", "b-out", "a-out"]
        assert len(pipeline) == 2

    def test_empty_pipeline(self):
        pipeline = MiddlewarePipeline()
        response = pipeline.wrap(lambda request: text_response("x"))(HTTPRequest(method="GET", path="/"))

        assert response.body == b"x"


class TestLoggingMiddleware:
    """Tests for LoggingMiddleware."""

    def request(self, path="/hello", tls=None) -> HTTPRequest:
        return HTTPRequest(
            method="GET", path=path, target=path + "?a=1",
            headers={"user-agent": "curl/8.5.0"}, client_address=("192.0.2.1", 1234), tls=tls,
        )

    def test_access_line(self, caplog):
        middleware = LoggingMiddleware()

        with caplog.at_level(logging.INFO, logger="helloworld.access"):
            response = middleware(self.request(), lambda r: text_response("hello"))

        assert response.body == b"hello"
        assert "X-Request-ID" not in response.headers
        message = caplog.records[0].getMessage()
        assert message.startswith("192.0.2.1 - - [")
        assert '"GET /hello?a=1" 200 5 ' in message
        assert message.endswith(" plain")

    def test_tls_transport(self, caplog):
        middleware = LoggingMiddleware()

        with caplog.at_level(logging.INFO, logger="helloworld.access"):
            middleware(self.request(tls=TLSInfo(cipher_id=0x1301)), lambda r: text_response("x"))

        assert caplog.records[0].getMessage().endswith(" tls")

    def test_skip_paths(self, caplog):
        middleware = LoggingMiddleware(skip_paths=["/_health"])

        with caplog.at_level(logging.INFO, logger="helloworld.access"):
            middleware(self.request("/_health"), lambda r: text_response("accepting"))

        assert caplog.records == []

    def test_json_format_and_request_id(self, caplog):
        middleware = LoggingMiddleware(log_format="json", include_request_id=True)

        with caplog.at_level(logging.INFO, logger="helloworld.access"):
            response = middleware(self.request(), lambda r: HTTPResponse(status=204))

        assert len(response.headers["X-Request-ID"]) == 8
        assert '"status_code": 204' in caplog.records[0].getMessage()

    def test_handler_error_is_logged_and_raised(self, caplog):
        def broken(request):
            raise RuntimeError("boom")

        with caplog.at_level(logging.ERROR, logger="helloworld.access"):
            with pytest.raises(RuntimeError):
                LoggingMiddleware()(self.request(), broken)

        assert "RuntimeError: boom" in caplog.records[0].getMessage()


# =============================================================================
# CLI
# =============================================================================

class TestCLI:
    """Tests for the command-line entry point."""

    def test_flags_override_environment(self, monkeypatch):
        monkeypatch.setenv("HELLOWORLD_PORT", "9000")
        monkeypatch.setenv("HELLOWORLD_GREETING", "from env\n")
        args = build_parser().parse_args([
            "--port", "9100",
            "--cert-dir", "/srv/certs",
            "--alpn", "h2", "--alpn", "http/1.1",
            "--no-plaintext",
            "--trace-allocations",
        ])

        config = config_from_args(args)

        assert config.port == 9100
        assert config.greeting == "from env\n"
        assert config.cert_dir == "/srv/certs"
        assert config.alpn_protocols == ["h2", "http/1.1"]
        assert config.allow_plaintext is False
        assert config.trace_allocations is True

    def test_alpn_help_explains_default(self):
        text = " ".join(build_parser().format_help().split())

        assert "default: http/1.1" in text
        assert "h2 is not offered by default" in text

    def test_unset_flags_keep_defaults(self, monkeypatch):
        for name in ("HELLOWORLD_PORT", "HELLOWORLD_HOST", "HELLOWORLD_GREETING"):
            monkeypatch.delenv(name, raising=False)

        config = config_from_args(build_parser().parse_args([]))

        assert config.port == 8080
        assert config.alpn_protocols == ["http/1.1"]
        assert config.allow_plaintext is True

    def test_routes(self, capsys):
        assert main(["--routes"]) == 0

        out = capsys.readouterr().out
        assert "/_info" in out
        assert "/_health" in out
        assert "/.well-known/" in out

    def test_invalid_port_exits_2(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["--port", "70000"])

        assert exc_info.value.code == 2

    def test_port_in_use_returns_1(self, tmp_path, monkeypatch):
        import socket

        monkeypatch.chdir(tmp_path)
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", 0))
            busy.listen(1)
            port = busy.getsockname()[1]

            assert main(["--host", "127.0.0.1", "--port", str(port), "--log-level", "CRITICAL"]) == 1

    def test_listener_lost_returns_1(self, tmp_path, monkeypatch):
        import threading

        from helloworld import __main__ as cli

        real_create_app = cli.create_app
        created = []

        def close_listener(server):
            if server.wait_until_ready(5.0):
                server._socket_server._socket.close()

        def create_app(config):
            server = real_create_app(config)
            created.append(server)
            threading.Thread(target=close_listener, args=(server,), daemon=True).start()
            return server

        monkeypatch.setattr(cli, "create_app", create_app)

        status = main([
            "--host", "127.0.0.1", "--port", "0",
            "--cert-dir", str(tmp_path), "--log-level", "CRITICAL",
        ])

        assert status == 1
        assert len(created) == 1

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])

        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out
