"""Tests for TLS client construction and CA helpers."""

from __future__ import annotations

import base64
import ssl
from pathlib import Path

import httpx
import pytest

from osprey import web
from osprey.exceptions import CAError


class TestLoadTlsCert:
    def test_returns_base64_pem(self, ca_file: Path, ca_pem: bytes) -> None:
        assert base64.b64decode(web.load_tls_cert(ca_file)) == ca_pem

    def test_empty_path(self) -> None:
        assert web.load_tls_cert("") == ""

    def test_not_pem(self, tmp_path: Path) -> None:
        path = tmp_path / "x.pem"
        path.write_text("hello")
        with pytest.raises(CAError):
            web.load_tls_cert(path)


class TestDecodeCaData:
    def test_round_trips(self, ca_data: str, ca_pem: bytes) -> None:
        assert web.decode_ca_data(ca_data) == ca_pem

    def test_invalid_base64(self) -> None:
        with pytest.raises(CAError, match="failed to decode CA data"):
            web.decode_ca_data("***")


class TestSslContext:
    def test_trusts_extra_cas(self, ca_data: str) -> None:
        before = ssl.create_default_context().cert_store_stats()["x509_ca"]
        context = web.ssl_context([ca_data, ""])
        assert context.cert_store_stats()["x509_ca"] == before + 1
        assert context.verify_mode == ssl.CERT_REQUIRED

    def test_skip_verify(self) -> None:
        context = web.ssl_context(skip_verify=True)
        assert context.verify_mode == ssl.CERT_NONE
        assert not context.check_hostname


class TestNewTlsClient:
    def test_uses_transport_override(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="ok"))
        with web.new_tls_client("ignored", transport=transport) as client:
            assert client.get("https://osprey.example.com/").text == "ok"
            assert client.timeout.connect == 10.0
            assert client.timeout.read == 30.0


class TestHtmlToText:
    def test_strips_scripts_and_collapses_whitespace(self) -> None:
        body = "<html><script>alert(1)</script><div>Error:   <b>denied</b></div><br/>retry</html>"
        assert web.html_to_text(body) == "Error: denied\nretry"
