"""OAuth2 device authorization grant (:rfc:`8628`).

For terminals that cannot host a loopback callback. The flow is:

1. POST ``client_id`` (and ``scope``) to the device authorization endpoint.
   Azure does not advertise one, so it is derived from the authorization
   endpoint by replacing ``/authorize`` with ``/v2.0/devicecode``.
2. Show the provider's ``message`` (verification URI and user code).
3. Poll the token endpoint, sleeping ``interval`` seconds *before* each
   request:

   * ``authorization_pending`` -- keep the interval.
   * ``slow_down`` -- add 5 seconds to the interval.
   * ``authorization_declined`` / ``access_denied`` / ``expired_token`` /
     ``bad_verification_code`` -- fail.
   * anything else -- fail as an invalid response.

The loop stops at ``min(login_timeout, expires_in)`` and checks the
cancellation event on every iteration.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from osprey.exceptions import (
    AuthError,
    CancelledError_,
    LoginTimeoutError,
    NetworkError,
    ProtocolError,
    TokenRequestError,
)
from osprey.output import debug, print_data

if TYPE_CHECKING:
    from osprey.oidc.client import OAuth2Token, OIDCClient

DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"
DEFAULT_INTERVAL = 5
SLOW_DOWN_INCREMENT = 5
# Opaque state embedded in the authorize URL the Azure device endpoint is derived from.
DEVICE_STATE = "ospreyState"

ERR_AUTHORIZATION_PENDING = "authorization_pending"
ERR_SLOW_DOWN = "slow_down"
_FATAL_ERRORS = frozenset(
    {"authorization_declined", "access_denied", "expired_token", "bad_verification_code"}
)


@dataclass
class DeviceFlowAuth:
    """The device authorization response."""

    device_code: str
    user_code: str = ""
    verification_uri: str = ""
    message: str = ""
    expires_in: int = 0
    interval: int = 0

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> DeviceFlowAuth:
        if not data.get("device_code"):
            raise ProtocolError("device authorization response missing 'device_code'")
        return cls(
            device_code=data["device_code"],
            user_code=data.get("user_code", ""),
            verification_uri=data.get("verification_uri") or data.get("verification_url", ""),
            message=data.get("message", ""),
            expires_in=int(data.get("expires_in") or 0),
            interval=int(data.get("interval") or 0),
        )

    def instructions(self) -> str:
        if self.message:
            return self.message
        return f"To sign in, open {self.verification_uri} and enter the code {self.user_code}"


def device_authorization_url(client: OIDCClient) -> str:
    """Return the device endpoint, deriving Azure's from the authorize URL."""
    endpoint = client.config.endpoint
    if endpoint.device_auth_url:
        return endpoint.device_auth_url
    original = client.config.redirect_uri
    client.config.redirect_uri = ""
    try:
        auth_url = client.config.auth_code_url(DEVICE_STATE)
    finally:
        client.config.redirect_uri = original
    return auth_url.replace("/authorize", "/v2.0/devicecode", 1)


def _wait(cancel: threading.Event, seconds: float) -> bool:
    """Sleep for *seconds*; return True if *cancel* was set meanwhile."""
    return cancel.wait(seconds)


def request_device_code(client: OIDCClient) -> DeviceFlowAuth:
    """Start the device flow and return the provider's device authorization."""
    url = device_authorization_url(client)
    data = {"client_id": client.config.client_id}
    if client.config.scopes:
        data["scope"] = " ".join(client.config.scopes)
    try:
        with client.http_client() as http:
            response = http.post(url, data=data, headers={"Accept": "application/json"})
    except httpx.HTTPError as exc:
        raise NetworkError(f"unable to post form to {url}: {exc}") from exc

    if not response.is_success:
        raise AuthError(f"device authorization failed: HTTP error {response.status_code}: {response.text}")
    try:
        body = response.json()
    except ValueError as exc:
        raise ProtocolError(f"unable to unmarshal device-flow response: {exc}") from exc
    return DeviceFlowAuth.from_response(body)


def poll_for_token(
    client: OIDCClient,
    device: DeviceFlowAuth,
    cancel: threading.Event,
    timeout: float,
) -> OAuth2Token:
    """Poll the token endpoint until the user completes the device login.

    Raises:
        AuthError: If the user declines or the device code expires.
        ProtocolError: On an unexpected error response.
        LoginTimeoutError: If *timeout* elapses first.
        CancelledError_: If *cancel* is set.
    """
    interval = device.interval or DEFAULT_INTERVAL
    deadline = time.monotonic() + timeout
    data = {"grant_type": DEVICE_CODE_GRANT, "device_code": device.device_code}
    if client.server_application_id:
        data["resource"] = f"spn:{client.server_application_id}"

    while True:
        if time.monotonic() + interval > deadline:
            raise LoginTimeoutError("exceeded device-code login deadline")
        if _wait(cancel, interval) or cancel.is_set():
            raise CancelledError_("login cancelled")

        try:
            return client.request_token(data)
        except TokenRequestError as exc:
            if exc.error_code == ERR_AUTHORIZATION_PENDING:
                debug("device-code: authorization pending")
                continue
            if exc.error_code == ERR_SLOW_DOWN:
                interval += SLOW_DOWN_INCREMENT
                debug(f"device-code: slowing down, polling every {interval}s")
                continue
            if exc.error_code in _FATAL_ERRORS:
                raise AuthError(f"failed to fetch device-flow token: oauth2: {exc.error_code}") from exc
            raise ProtocolError(f"invalid response from device-code endpoint: {exc}") from exc


def authenticate_device(client: OIDCClient, cancel: threading.Event) -> OAuth2Token:
    """Run the whole device flow for *client*."""
    device = request_device_code(client)
    print_data(device.instructions())
    timeout = client.login_timeout
    if device.expires_in:
        timeout = min(timeout, device.expires_in)
    return poll_for_token(client, device, cancel, timeout)
