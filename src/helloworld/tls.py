"""
=============================================================================
TLS SETUP
=============================================================================

Loads the server certificate and describes negotiated connections.

=============================================================================
CERTIFICATE SELECTION
=============================================================================

Pairs are tried in order, relative to the certificate directory:

    1. public_key.pem   + public_key.key      (publicly trusted certificate)
    2. internal_key.pem + internal_key.key    (internal CA certificate)

    ┌────────────────────────────┬────────────────────────────────────────┐
    │ Situation                  │ Result                                 │
    ├────────────────────────────┼────────────────────────────────────────┤
    │ certificate file missing   │ pair skipped silently                  │
    │ pair fails to load         │ warning logged, next pair tried        │
    │ pair loads                 │ SSLContext built, search stops         │
    │ nothing loads              │ None: the server stays plaintext       │
    └────────────────────────────┴────────────────────────────────────────┘

=============================================================================
SAME-PORT TLS
=============================================================================

Every TLS connection starts with a handshake record, whose first byte is
the content type 0x16. The connection layer peeks that byte before
deciding whether to wrap the socket:

    0x16 ....  → TLS handshake
    "GET ..."  → plaintext HTTP on the same port

=============================================================================
"""

import logging
import os
import ssl
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from .http.request import TLSInfo


logger = logging.getLogger(__name__)


TLS_HANDSHAKE_RECORD = 0x16


@dataclass
class TLSSetup:
    """
    A loaded server-side TLS context.

    Attributes:
        context: Server SSLContext with the certificate chain loaded.
        certfile: Path of the certificate that was loaded.
        keyfile: Path of its private key.
        cipher_ids: OpenSSL cipher name → IANA cipher suite number.
    """

    context: ssl.SSLContext
    certfile: str
    keyfile: str
    cipher_ids: dict[str, int] = field(default_factory=dict)

    def describe(self, sock: ssl.SSLSocket) -> TLSInfo:
        """TLSInfo for a socket whose handshake has completed."""
        cipher = sock.cipher()
        name = cipher[0] if cipher else ""
        return TLSInfo(
            protocol=sock.selected_alpn_protocol() or "",
            cipher_name=name,
            cipher_id=self.cipher_ids.get(name, 0),
            version=sock.version() or "",
        )


def is_tls_handshake(first_bytes: bytes) -> bool:
    """True when the peeked bytes start a TLS handshake record."""
    return bool(first_bytes) and first_bytes[0] == TLS_HANDSHAKE_RECORD


def cipher_suite_ids(context: ssl.SSLContext) -> dict[str, int]:
    """
    Map cipher names to IANA suite numbers.

    OpenSSL reports ids with a 0x0300 protocol prefix (0x0300C02F); the
    suite number is the low 16 bits (0xC02F).
    """
    return {cipher["name"]: cipher["id"] & 0xFFFF for cipher in context.get_ciphers()}


def create_server_context(
    certfile: str,
    keyfile: str,
    alpn_protocols: Sequence[str] = ("http/1.1",),
) -> ssl.SSLContext:
    """
    Build a server SSLContext for one certificate pair.

    Raises:
        ssl.SSLError: Certificate or key cannot be parsed, or do not match.
        OSError: A file cannot be read.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.load_cert_chain(certfile=certfile, keyfile=keyfile)
    if alpn_protocols:
        context.set_alpn_protocols(list(alpn_protocols))
    return context


def load_tls(
    cert_dir: str,
    cert_pairs: Iterable[tuple[str, str]],
    alpn_protocols: Sequence[str] = ("http/1.1",),
) -> Optional[TLSSetup]:
    """
    Load the first usable certificate pair.

    Args:
        cert_dir: Directory the pair file names are relative to.
        cert_pairs: (certificate, key) file names in priority order.
        alpn_protocols: Protocols to offer during ALPN.

    Returns:
        TLSSetup for the first pair that loads, or None.
    """
    for cert_name, key_name in cert_pairs:
        certfile = os.path.join(cert_dir, cert_name)
        keyfile = os.path.join(cert_dir, key_name)

        if not os.path.isfile(certfile):
            logger.debug(f"No certificate at {certfile}, skipping")
            continue

        try:
            context = create_server_context(certfile, keyfile, alpn_protocols)
        except (ssl.SSLError, OSError) as e:
            logger.warning(f"Failed to load certificate {certfile}: {e}")
            continue

        logger.info(f"Loaded TLS certificate {certfile}")
        return TLSSetup(
            context=context,
            certfile=certfile,
            keyfile=keyfile,
            cipher_ids=cipher_suite_ids(context),
        )

    return None
