"""OpenID Connect discovery."""

from __future__ import annotations

from typing import Any, Optional

import httpx

from osprey import web
from osprey.exceptions import AuthError, NetworkError, ProtocolError
from osprey.oidc.client import Endpoint

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


def well_known_url(issuer_url: str) -> str:
    """Return the discovery document URL for *issuer_url*.

    URLs that already point at a ``.well-known`` document are returned as-is.
    """
    if "/.well-known/" in issuer_url:
        return issuer_url
    return issuer_url.rstrip("/") + WELL_KNOWN_PATH


def discover(
    issuer_url: str,
    ca_data: str = "",
    transport: Optional[httpx.BaseTransport] = None,
) -> dict[str, Any]:
    """Fetch the discovery document for *issuer_url*.

    Raises:
        NetworkError: If the issuer cannot be reached.
        AuthError: If the issuer answers with an error status.
        ProtocolError: If the document is not JSON or lacks the
            authorization or token endpoint.
    """
    url = well_known_url(issuer_url)
    try:
        with web.new_tls_client(ca_data, transport=transport) as http:
            response = http.get(url, headers={"Accept": "application/json"})
    except httpx.HTTPError as exc:
        raise NetworkError(f"unable to query well-known oidc config at {url}: {exc}") from exc

    if response.status_code != httpx.codes.OK:
        raise AuthError(
            f"oidc discovery at {url} failed with status {response.status_code}: {response.text}"
        )
    try:
        doc: dict[str, Any] = response.json()
    except ValueError as exc:
        raise ProtocolError(f"oidc discovery at {url} returned invalid JSON: {exc}") from exc

    if "authorization_endpoint" not in doc:
        raise ProtocolError("oidc discovery document missing 'authorization_endpoint'")
    if "token_endpoint" not in doc:
        raise ProtocolError("oidc discovery document missing 'token_endpoint'")
    return doc


def get_well_known_config(
    issuer_url: str,
    ca_data: str = "",
    transport: Optional[httpx.BaseTransport] = None,
) -> Endpoint:
    """Resolve the OAuth2 endpoints advertised by *issuer_url*."""
    doc = discover(issuer_url, ca_data=ca_data, transport=transport)
    return Endpoint(
        auth_url=doc["authorization_endpoint"],
        token_url=doc["token_endpoint"],
        device_auth_url=doc.get("device_authorization_endpoint", ""),
    )
