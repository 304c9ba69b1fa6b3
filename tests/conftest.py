"""
pytest configuration and fixtures.
"""

import datetime
import socket
import ssl
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Generator, Optional, Union

import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from helloworld import HelloWorldServer, ServerConfig
from helloworld.buildinfo import BuildInfo


TEST_BUILD = BuildInfo(version="v9.9.9", date="20260101000000", mode="TEST")


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /some/page?lang=en HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: */*\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with a body."""
    body = b"token=abc123"
    head = (
        b"POST /.well-known/acme-challenge/abc123 HTTP/1.1\r\n"
        b"Host: example.com\r\n"
        b"Content-Type: application/x-www-form-urlencoded\r\n"
        b"Content-Length: %d\r\n"
        b"Connection: close\r\n"
        b"\r\n"
    ) % len(body)
    return head + body


@pytest.fixture
def config(tmp_path) -> ServerConfig:
    """Test configuration: loopback, OS-picked port, empty cert dir."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,
        timeout=5.0,
        cert_dir=str(tmp_path),
        log_level="WARNING",
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


# =============================================================================
# BACKGROUND SERVER
# =============================================================================

class RunningServer:
    """Runs a HelloWorldServer in a background thread."""

    def __init__(self, server: HelloWorldServer):
        self.server = server
        self._thread: Optional[threading.Thread] = None
        self.error: Optional[BaseException] = None

    def _run(self):
        try:
            self.server.run()
        except BaseException as e:  # surfaced to the test through .error
            self.error = e

    def start(self) -> "RunningServer":
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

        if not self.server.wait_until_ready(5.0):
            raise RuntimeError(f"Server failed to start: {self.error!r}")
        return self

    @property
    def port(self) -> int:
        return self.server.address[1]

    def connect(self, timeout: float = 5.0) -> socket.socket:
        return socket.create_connection(("127.0.0.1", self.port), timeout=timeout)

    def wait(self, timeout: float = 5.0) -> bool:
        """Wait for run() to return on its own. False if it is still running."""
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def stop(self):
        self.server.stop()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)


@pytest.fixture
def start_server(config: ServerConfig) -> Generator:
    """
    Factory fixture: start_server(**config_overrides) → RunningServer.

    Servers are stopped at teardown.
    """
    started: list[RunningServer] = []

    def _start(**overrides) -> RunningServer:
        for name, value in overrides.items():
            setattr(config, name, value)
        running = RunningServer(HelloWorldServer(config, build=TEST_BUILD)).start()
        started.append(running)
        return running

    yield _start

    for running in started:
        running.stop()


# =============================================================================
# STUB UPSTREAM (for the /.well-known/ proxy)
# =============================================================================

class StubUpstream:
    """
    A plain HTTP server that records requests and answers with a fixed
    response.

    headers is a dict, or a list of (name, value) pairs when a name must
    repeat.
    """

    def __init__(self, status: int = 200, body: bytes = b"challenge-response",
                 headers: Union[dict, list, None] = None):
        self.status = status
        self.body = body
        self.headers = headers or {"Content-Type": "text/plain"}
        self.requests: list[dict] = []

        stub = self

        class Handler(BaseHTTPRequestHandler):
            def _serve(self):
                length = int(self.headers.get("Content-Length") or 0)
                stub.requests.append({
                    "method": self.command,
                    "path": self.path,
                    "headers": {k.lower(): v for k, v in self.headers.items()},
                    "body": self.rfile.read(length) if length else b"",
                })
                self.send_response(stub.status)
                items = stub.headers.items() if isinstance(stub.headers, dict) else stub.headers
                for name, value in items:
                    self.send_header(name, value)
                self.send_header("Content-Length", str(len(stub.body)))
                self.end_headers()
                if self.command != "HEAD":
                    self.wfile.write(stub.body)

            do_GET = do_POST = do_PUT = do_DELETE = do_HEAD = _serve

            def log_message(self, format, *args):
                pass

        self._httpd = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self._thread = threading.Thread(target=self._httpd.serve_forever, daemon=True)

    @property
    def address(self) -> str:
        host, port = self._httpd.server_address[:2]
        return f"{host}:{port}"

    def start(self) -> "StubUpstream":
        self._thread.start()
        return self

    def stop(self):
        self._httpd.shutdown()
        self._httpd.server_close()


@pytest.fixture
def upstream() -> Generator[StubUpstream, None, None]:
    stub = StubUpstream().start()
    yield stub
    stub.stop()


# =============================================================================
# TLS
# =============================================================================

@pytest.fixture(scope="session")
def self_signed_pem() -> tuple[bytes, bytes]:
    """(certificate PEM, private key PEM) for localhost, generated once."""
    from cryptography import x509
    from cryptography.hazmat.primitives import hashes, serialization
    from cryptography.hazmat.primitives.asymmetric import ec
    from cryptography.x509.oid import NameOID
    import ipaddress

    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    not_before = datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(minutes=5)

    cert = (x509.CertificateBuilder()
            .subject_name(name).issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_before + datetime.timedelta(days=1))
            .add_extension(x509.SubjectAlternativeName([
                x509.DNSName("localhost"),
                x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
            ]), critical=False)
            .sign(key, hashes.SHA256()))

    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return cert.public_bytes(serialization.Encoding.PEM), key_pem


def write_pair(directory: Path, stem: str, pem: tuple[bytes, bytes]) -> None:
    """Write <stem>.pem and <stem>.key."""
    (directory / f"{stem}.pem").write_bytes(pem[0])
    (directory / f"{stem}.key").write_bytes(pem[1])


@pytest.fixture
def tls_client_context() -> ssl.SSLContext:
    """Client context that trusts anything and offers http/1.1."""
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    context.set_alpn_protocols(["http/1.1"])
    return context


# =============================================================================
# RAW HTTP HELPERS
# =============================================================================

def read_response(sock: socket.socket) -> tuple[int, dict, bytes]:
    """
    Read one response from a socket: (status, headers, body).

    Header names are lower-cased. The body is read by Content-Length.
    """
    data = b""
    while b"\r\n\r\n" not in data:
        chunk = sock.recv(4096)
        if not chunk:
            break
        data += chunk

    head, _, rest = data.partition(b"\r\n\r\n")
    lines = head.decode("latin-1").split("\r\n")
    status = int(lines[0].split(" ")[1])
    headers = {}
    for line in lines[1:]:
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()

    length = int(headers.get("content-length", 0))
    while len(rest) < length:
        chunk = sock.recv(4096)
        if not chunk:
            break
        rest += chunk
    return status, headers, rest[:length]


def send_request(sock: socket.socket, method: str, target: str,
                 headers: Optional[dict] = None, body: bytes = b"") -> None:
    headers = dict(headers or {})
    headers.setdefault("Host", "localhost")
    lines = [f"{method} {target} HTTP/1.1"]
    for name, value in headers.items():
        lines.append(f"{name}: {value}")
    if body:
        lines.append(f"Content-Length: {len(body)}")
    sock.sendall(("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + body)
