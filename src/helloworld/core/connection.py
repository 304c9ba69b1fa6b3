"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps one accepted client socket with buffered HTTP request reading,
keep-alive timeouts and, when TLS is configured, the TLS handshake.

=============================================================================
TCP IS A BYTE STREAM
=============================================================================

One recv() can return half a request, or one and a half. Data is buffered
until the header terminator (\\r\\n\\r\\n) is seen, then until the body
has arrived: Content-Length bytes, or a chunked body up to its last chunk
and trailers. Anything after that stays in the buffer for the next request
on the connection.

A client that sent "Expect: 100-continue" is told "HTTP/1.1 100 Continue"
before the body is read, unless the body is already on its way.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──► HANDSHAKE ──► READING ──► PROCESSING ──► WRITING ──┐
     │          │            │                          │       │
     │          │            │                          │       ▼
     │          │            │                          │  KEEP_ALIVE
     │          ▼            ▼                          │       │
     └──────► CLOSING ◄─────────────────────────────────┴───────┘
                 │
                 ▼
               CLOSED

HANDSHAKE is only entered when the server has a certificate loaded.

=============================================================================
"""

import socket
import ssl
import time
import logging
import uuid
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, TYPE_CHECKING

from ..http.request import HTTPParseError, TLSInfo, chunked_body_end, is_chunked
from ..http.status_codes import HTTPStatus
from ..tls import is_tls_handshake

if TYPE_CHECKING:
    from ..tls import TLSSetup


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection lifecycle states, used in debug logs."""
    NEW = "new"
    HANDSHAKE = "handshake"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Connection:
    """
    A client connection.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    Connection Responsibilities                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  1. TLS NEGOTIATION                                                  │
    │     └── Peek the first byte, wrap the socket if it is 0x16           │
    │                                                                      │
    │  2. BUFFERED READING                                                 │
    │     └── Accumulate bytes until a full request is available           │
    │                                                                      │
    │  3. TIMEOUT MANAGEMENT                                               │
    │     └── First request: timeout (30s default)                         │
    │     └── Keep-alive: keep_alive_timeout (5s default)                  │
    │                                                                      │
    │  4. GRACEFUL CLOSE                                                   │
    │     └── SHUT_WR, drain, close                                        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Attributes:
        socket: The client socket (an SSLSocket after negotiate()).
        address: Client's (ip, port) tuple.
        id: Short identifier for log lines.
        state: Current connection state.
        tls: Negotiated TLS parameters, None for plaintext.
        requests_handled: Number of requests read on this connection.
    """

    socket: socket.socket
    address: tuple[str, int]

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    requests_handled: int = 0
    tls: Optional[TLSInfo] = None

    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024

    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def client_port(self) -> int:
        return self.address[1]

    @property
    def age(self) -> float:
        """Connection age in seconds."""
        return time.time() - self.created_at

    @property
    def is_tls(self) -> bool:
        return self.tls is not None

    # =========================================================================
    # TLS
    # =========================================================================

    def negotiate(self, setup: Optional["TLSSetup"], allow_plaintext: bool = True) -> bool:
        """
        Decide between TLS and plaintext for this connection.

        With no TLS setup the connection is plaintext and nothing is read.
        Otherwise the first byte is peeked (not consumed): a handshake
        record wraps the socket and completes the handshake here, in the
        connection's own thread; anything else is served as plaintext if
        allow_plaintext is set.

        Returns:
            True if the connection should be served, False if it should be
            closed (peer went away, handshake failed, plaintext refused).
        """
        if setup is None:
            return True

        self.state = ConnectionState.HANDSHAKE

        try:
            first = self.socket.recv(1, socket.MSG_PEEK)
        except OSError as e:
            logger.debug(f"[{self.id}] Peek failed: {e}")
            return False

        if not first:
            return False

        if not is_tls_handshake(first):
            if not allow_plaintext:
                logger.debug(f"[{self.id}] Plaintext refused")
                return False
            return True

        try:
            self.socket = setup.context.wrap_socket(self.socket, server_side=True)
        except (ssl.SSLError, OSError) as e:
            logger.debug(f"[{self.id}] TLS handshake failed: {e}")
            return False

        self.tls = setup.describe(self.socket)
        logger.debug(
            f"[{self.id}] TLS established: {self.tls.version} {self.tls.cipher_name} "
            f"alpn={self.tls.protocol or '-'}"
        )
        return True

    # =========================================================================
    # READING
    # =========================================================================

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete HTTP request from the socket.

        Returns:
            The request bytes, or None if the peer closed the connection
            (or went idle on a kept-alive connection).

        Raises:
            TimeoutError: The first request did not arrive in time.
            HTTPParseError: The request exceeds max_request_size (413), or
                            its chunked framing is malformed (400).
        """
        self.state = ConnectionState.READING
        self.last_activity = time.time()

        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            while b"\r\n\r\n" not in self._buffer:
                chunk = self._recv()
                if not chunk:
                    return None

                self._buffer += chunk
                self._check_size(len(self._buffer))

            header_end = self._buffer.find(b"\r\n\r\n")
            header_section = self._buffer[:header_end]
            body_start = header_end + 4

            transfer_encoding = self._raw_header(header_section, "transfer-encoding")
            if transfer_encoding is not None:
                if is_chunked(transfer_encoding):
                    self._send_continue(header_section, body_start)
                    request_end = self._read_chunked(body_start)
                else:
                    # Unframeable; the parser answers it and the connection closes.
                    request_end = body_start
            else:
                content_length = self._content_length(header_section)
                self._check_size(body_start + content_length)
                if content_length:
                    self._send_continue(header_section, body_start)

                while len(self._buffer) - body_start < content_length:
                    chunk = self._recv()
                    if not chunk:
                        break  # Peer closed mid-body; the parser sees a short body

                    self._buffer += chunk

                request_end = body_start + content_length

            request_data = self._buffer[:request_end]

            # Pipelined requests stay buffered for the next call.
            self._buffer = self._buffer[request_end:]

            self.requests_handled += 1
            self.last_activity = time.time()

            return request_data

        except socket.timeout:
            if self.requests_handled > 0:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")

        finally:
            self.socket.settimeout(self.timeout)

    def _check_size(self, size: int) -> None:
        if size > self.max_request_size:
            raise HTTPParseError(
                f"Request too large: {size} bytes",
                status_code=HTTPStatus.PAYLOAD_TOO_LARGE,
            )

    def _recv(self) -> bytes:
        try:
            data = self.socket.recv(self.buffer_size)
            self.last_activity = time.time()
            return data
        except (ConnectionResetError, BrokenPipeError):
            return b""
        except ssl.SSLError as e:
            logger.debug(f"[{self.id}] TLS read error: {e}")
            return b""

    def _read_chunked(self, body_start: int) -> int:
        """Buffer a chunked body; returns the offset where the request ends."""
        while True:
            end = chunked_body_end(self._buffer, body_start)
            if end is not None:
                return end

            chunk = self._recv()
            if not chunk:
                return len(self._buffer)  # The parser reports the truncated body

            self._buffer += chunk
            self._check_size(len(self._buffer))

    def _send_continue(self, headers: bytes, body_start: int) -> None:
        """
        Answer "Expect: 100-continue" on an HTTP/1.1 request whose body
        has not started arriving yet.
        """
        expect = self._raw_header(headers, "expect")
        if expect is None or expect.strip().lower() != "100-continue":
            return
        if not headers.split(b"\r\n", 1)[0].endswith(b" HTTP/1.1"):
            return
        if len(self._buffer) > body_start:
            return

        status = HTTPStatus.CONTINUE
        try:
            self.socket.sendall(f"HTTP/1.1 {int(status)} {status.phrase}\r\n\r\n".encode("latin-1"))
        except OSError as e:
            logger.debug(f"[{self.id}] Sending 100 Continue failed: {e}")

    def _raw_header(self, headers: bytes, name: str) -> Optional[str]:
        """
        A header value from the raw header block, None if absent.

        Read before the request is parsed; the parser validates values.
        """
        prefix = name.lower() + ":"
        for line in headers.decode("latin-1").split("\r\n")[1:]:
            if line.lower().startswith(prefix):
                return line[len(prefix):].strip()
        return None

    def _content_length(self, headers: bytes) -> int:
        """Content-Length from the raw header block, 0 if absent or invalid."""
        value = self._raw_header(headers, "content-length")
        if value is None:
            return 0
        try:
            return max(0, int(value))
        except ValueError:
            return 0
        return 0

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_response(self, data: bytes) -> bool:
        """
        Send response bytes.

        Returns:
            True on success, False if the peer is gone.
        """
        self.state = ConnectionState.WRITING
        self.last_activity = time.time()

        try:
            self.socket.sendall(data)
            self.last_activity = time.time()
            return True
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Close the connection: SHUT_WR, drain what the peer still sends,
        then release the descriptor. Safe to call twice.
        """
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass

        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except OSError:
            pass

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    def set_keep_alive(self):
        """Mark connection as waiting for its next request."""
        self.state = ConnectionState.KEEP_ALIVE

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
