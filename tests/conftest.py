"""Shared test fixtures for osprey.

Provides reusable fixtures for building certificates, JWTs and
ospreyconfig files, isolating ``HOME``, managing output state and running
CLI commands. These fixtures are automatically discovered by pytest and
available to all test modules without explicit imports.
"""

from __future__ import annotations

import base64
import datetime
from pathlib import Path
from typing import Any, Callable

import jwt
import pytest
import yaml
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from osprey.output import OutputManager, reset_output, set_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    Forces a fresh manager, bound to the current sys.stderr, on next use.
    """
    yield
    reset_output()


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a quiet OutputManager for tests that don't care about output."""
    output = OutputManager(no_color=True, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# Certificates and tokens
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def ca_pem() -> bytes:
    """A self-signed CA certificate in PEM form."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "osprey-test-ca")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM)


@pytest.fixture
def ca_data(ca_pem: bytes) -> str:
    """The test CA, base64-encoded as in ``certificate-authority-data``."""
    return base64.b64encode(ca_pem).decode("ascii")


@pytest.fixture
def ca_file(tmp_path: Path, ca_pem: bytes) -> Path:
    """The test CA written to a file."""
    path = tmp_path / "ca.pem"
    path.write_bytes(ca_pem)
    return path


@pytest.fixture
def make_jwt() -> Callable[..., str]:
    """Return a helper that signs *claims* into an (unverified) JWT."""

    def _make(**claims: Any) -> str:
        return jwt.encode(claims, "test-secret-with-enough-bytes-for-hs256", algorithm="HS256")

    return _make


# ---------------------------------------------------------------------------
# Config files
# ---------------------------------------------------------------------------


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point ``HOME`` at a temporary directory."""
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    monkeypatch.setenv("HOME", str(home_dir))
    monkeypatch.delenv("NO_COLOR", raising=False)
    return home_dir


@pytest.fixture
def write_config(tmp_path: Path) -> Callable[[dict[str, Any]], Path]:
    """Return a helper that writes *data* as an ospreyconfig YAML file."""

    def _write(data: dict[str, Any], name: str = "ospreyconfig") -> Path:
        path = tmp_path / name
        path.write_text(yaml.safe_dump(data, sort_keys=False))
        return path

    return _write


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner.

    ``result.output`` holds everything written to stdout and stderr.
    """
    from typer.testing import CliRunner

    return CliRunner()
