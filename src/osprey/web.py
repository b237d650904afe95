"""HTTP and TLS helpers shared by the retrievers and the OIDC client.

Every outbound request in osprey goes through an :class:`httpx.Client`
built by :func:`new_tls_client`. The client trusts the system CA bundle plus
any base64-encoded PEM bundles supplied by the config, and enforces the
connect/read timeouts the login flows rely on.
"""

from __future__ import annotations

import base64
import binascii
import ssl
from html.parser import HTMLParser
from pathlib import Path
from typing import Iterable, Optional

import httpx
from cryptography import x509

from osprey.exceptions import CAError

DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


def load_tls_cert(path: str | Path) -> str:
    """Read a PEM bundle from *path* and return it base64-encoded.

    Raises:
        CAError: If the file cannot be read or holds no PEM certificate.
    """
    if not path:
        return ""
    try:
        data = Path(path).expanduser().read_bytes()
    except OSError as exc:
        raise CAError(f"failed to read certificate file {str(path)!r}: {exc}") from exc
    _ensure_pem(data, str(path))
    return base64.b64encode(data).decode("ascii")


def decode_ca_data(ca_data: str, source: str = "certificate-authority-data") -> bytes:
    """Decode base64 CA data into PEM bytes, checking that it holds certificates."""
    try:
        pem = base64.b64decode(ca_data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CAError(f"failed to decode CA data from {source}: {exc}") from exc
    _ensure_pem(pem, source)
    return pem


def _ensure_pem(data: bytes, source: str) -> None:
    try:
        certs = x509.load_pem_x509_certificates(data)
    except ValueError as exc:
        raise CAError(f"no PEM certificates found in {source}: {exc}") from exc
    if not certs:
        raise CAError(f"no PEM certificates found in {source}")


def ssl_context(cas: Iterable[str] = (), skip_verify: bool = False) -> ssl.SSLContext:
    """Build an SSL context trusting the system store plus every bundle in *cas*.

    Args:
        cas: Base64-encoded PEM bundles. Empty strings are ignored.
        skip_verify: Disable certificate and hostname verification.
    """
    context = ssl.create_default_context()
    for ca in cas:
        if ca:
            context.load_verify_locations(cadata=decode_ca_data(ca).decode("ascii"))
    if skip_verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def new_tls_client(
    *cas: str,
    skip_verify: bool = False,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    """Return an :class:`httpx.Client` configured for TLS against osprey endpoints.

    Args:
        *cas: Base64-encoded PEM bundles to trust in addition to the system CAs.
        skip_verify: Disable server certificate verification.
        transport: Optional transport override (used by tests).
    """
    if transport is not None:
        return httpx.Client(transport=transport, timeout=DEFAULT_TIMEOUT)
    return httpx.Client(
        verify=ssl_context(cas, skip_verify=skip_verify),
        timeout=DEFAULT_TIMEOUT,
        follow_redirects=False,
    )


# --- HTML error bodies ---


_BLOCK_TAGS = frozenset(
    {"p", "div", "br", "h1", "h2", "h3", "h4", "h5", "h6", "li", "tr", "table", "title", "pre", "hr"}
)
_SKIP_TAGS = frozenset({"script", "style", "head"})


class _TextExtractor(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._parts: list[str] = []
        self._skip = 0

    def handle_starttag(self, tag, attrs):
        if tag in _SKIP_TAGS:
            self._skip += 1
        elif tag in _BLOCK_TAGS:
            self._parts.append("\n")

    def handle_endtag(self, tag):
        if tag in _SKIP_TAGS:
            self._skip = max(0, self._skip - 1)
        elif tag in _BLOCK_TAGS:
            self._parts.append("\n")

    def handle_data(self, data):
        if not self._skip:
            self._parts.append(data)

    def text(self) -> str:
        lines = (" ".join(line.split()) for line in "".join(self._parts).splitlines())
        return "\n".join(line for line in lines if line)


def html_to_text(body: str) -> str:
    """Render an HTML error page as plain text for the terminal."""
    parser = _TextExtractor()
    parser.feed(body)
    parser.close()
    return parser.text()
