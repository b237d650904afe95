"""OAuth2 / OpenID Connect client used by the cloud retrievers.

:class:`OIDCClient` drives one of three flows against a provider:

1. **Loopback callback** (:meth:`OIDCClient.auth_with_callback`) -- a
   single-use local HTTP server receives the authorization code on the
   configured redirect URI. The browser is opened in a second thread.
2. **Device code** (:meth:`OIDCClient.auth_with_device_code`) -- see
   :mod:`osprey.oidc.device`.
3. **Manual paste** (:meth:`OIDCClient.auth_with_manual_input`) -- the user
   opens the authorization URL themselves and pastes the code back.

:meth:`OIDCClient.token` picks between the first two and caches the
result, so a group login authenticates each provider at most once.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import queue
import secrets
import threading
import time
import webbrowser
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import httpx

from osprey import web
from osprey.exceptions import (
    AuthError,
    CancelledError_,
    LoginTimeoutError,
    NetworkError,
    OspreyError,
    ProtocolError,
    TokenRequestError,
)
from osprey.output import debug, info, print_data

DEFAULT_LOGIN_TIMEOUT = 90.0
OOB_REDIRECT_URI = "urn:ietf:wg:oauth:2.0:oob"

_SUCCESS_PAGE = b"""<html>
<head>
<title>Osprey Logged In</title>
<script type="text/javascript">
window.onload = setTimeout(function () { window.close(); }, 1000);
</script>
</head>
<body>
<h1>Successfully logged in...</h1>
</body>
</html>"""


@dataclass
class Endpoint:
    auth_url: str
    token_url: str
    device_auth_url: str = ""


@dataclass
class OAuth2Config:
    """Client registration and endpoints for one provider."""

    client_id: str
    client_secret: str
    redirect_uri: str
    endpoint: Endpoint
    scopes: list[str] = field(default_factory=list)

    def auth_code_url(self, state: str, **extra: str) -> str:
        """Build the authorization URL for the code grant."""
        params = {"client_id": self.client_id, "response_type": "code"}
        if self.redirect_uri:
            params["redirect_uri"] = self.redirect_uri
        if self.scopes:
            params["scope"] = " ".join(self.scopes)
        params["state"] = state
        params.update(extra)
        separator = "&" if "?" in self.endpoint.auth_url else "?"
        return f"{self.endpoint.auth_url}{separator}{urlencode(params)}"


@dataclass
class OAuth2Token:
    access_token: str
    id_token: str = ""
    token_type: str = "Bearer"
    refresh_token: str = ""
    expiry: Optional[datetime] = None

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> OAuth2Token:
        expiry = None
        expires_in = data.get("expires_in")
        if expires_in not in (None, ""):
            expiry = datetime.now(timezone.utc) + timedelta(seconds=float(expires_in))
        return cls(
            access_token=data["access_token"],
            id_token=data.get("id_token", "") or "",
            token_type=data.get("token_type", "Bearer") or "Bearer",
            refresh_token=data.get("refresh_token", "") or "",
            expiry=expiry,
        )


def generate_pkce_pair() -> tuple[str, str]:
    """Return a PKCE ``(code_verifier, code_challenge)`` pair using S256."""
    code_verifier = secrets.token_hex(32)
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    code_challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return code_verifier, code_challenge


class OIDCClient:
    """Obtains tokens for one provider.

    Args:
        config: Client registration and endpoints.
        login_timeout: Seconds to wait for an interactive login.
        use_device_code: Use the device-code flow instead of the loopback.
        disable_browser_popup: Print the authorization URL instead of
            opening a browser.
        server_application_id: Azure application ID of the cluster API,
            sent as the ``resource`` of device-code token requests.
        ca_data: Base64 PEM bundle trusted for the provider's endpoints.
        transport: Optional httpx transport override.
    """

    def __init__(
        self,
        config: OAuth2Config,
        login_timeout: float = DEFAULT_LOGIN_TIMEOUT,
        use_device_code: bool = False,
        disable_browser_popup: bool = False,
        server_application_id: str = "",
        ca_data: str = "",
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.config = config
        self.login_timeout = login_timeout
        self.use_device_code = use_device_code
        self.disable_browser_popup = disable_browser_popup
        self.server_application_id = server_application_id
        self._ca_data = ca_data
        self._transport = transport
        self._lock = threading.Lock()
        self._token: Optional[OAuth2Token] = None

    @property
    def authenticated(self) -> bool:
        return self._token is not None

    def http_client(self) -> httpx.Client:
        return web.new_tls_client(self._ca_data, transport=self._transport)

    def token(self, cancel: Optional[threading.Event] = None) -> OAuth2Token:
        """Return the cached token, authenticating first if needed."""
        cancel = cancel or threading.Event()
        with self._lock:
            if self._token is None:
                if self.use_device_code:
                    self._token = self.auth_with_device_code(cancel)
                else:
                    self._token = self.auth_with_callback(cancel)
            return self._token

    # ------------------------------------------------------------------ #
    # Token endpoint
    # ------------------------------------------------------------------ #

    def request_token(self, data: dict[str, str]) -> OAuth2Token:
        """POST *data* to the token endpoint with the client credentials.

        Raises:
            TokenRequestError: If the endpoint answers with an OAuth2 error.
            NetworkError: If the endpoint cannot be reached.
            ProtocolError: If the response is not a token or error document.
        """
        form = {"client_id": self.config.client_id, **data}
        if self.config.client_secret:
            form["client_secret"] = self.config.client_secret
        url = self.config.endpoint.token_url
        try:
            with self.http_client() as http:
                response = http.post(url, data=form, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            raise NetworkError(f"token request to {url} failed: {exc}") from exc

        try:
            body: dict[str, Any] = response.json()
        except ValueError as exc:
            raise ProtocolError(
                f"token endpoint returned status {response.status_code} with a non-JSON body"
            ) from exc

        if response.status_code == httpx.codes.OK and body.get("access_token"):
            return OAuth2Token.from_response(body)
        error_code = str(body.get("error", "") or "")
        description = body.get("error_description") or error_code or f"status {response.status_code}"
        raise TokenRequestError(error_code, f"oauth2: cannot fetch token: {description}")

    def exchange(self, code: str, redirect_uri: str, code_verifier: str = "") -> OAuth2Token:
        """Exchange an authorization code for a token."""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        }
        if code_verifier:
            data["code_verifier"] = code_verifier
        return self.request_token(data)

    # ------------------------------------------------------------------ #
    # Device code
    # ------------------------------------------------------------------ #

    def auth_with_device_code(self, cancel: Optional[threading.Event] = None) -> OAuth2Token:
        """Authenticate with the device-code flow."""
        from osprey.oidc.device import authenticate_device

        return authenticate_device(self, cancel or threading.Event())

    # ------------------------------------------------------------------ #
    # Loopback callback
    # ------------------------------------------------------------------ #

    def auth_with_callback(self, cancel: Optional[threading.Event] = None) -> OAuth2Token:
        """Authenticate through a browser and a local callback server.

        Raises:
            NetworkError: If the callback server cannot bind its address.
            LoginTimeoutError: If no callback arrives before the login timeout.
            CancelledError_: If *cancel* is set while waiting.
        """
        cancel = cancel or threading.Event()
        redirect = urlparse(self.config.redirect_uri)
        if not redirect.hostname or not redirect.port:
            raise ProtocolError(f"redirect-uri {self.config.redirect_uri!r} must be http://<host>:<port>/<path>")

        code_verifier, code_challenge = generate_pkce_pair()
        state = secrets.token_hex(24)
        auth_url = self.config.auth_code_url(
            state,
            code_challenge_method="S256",
            code_challenge=code_challenge,
        )

        results: queue.Queue = queue.Queue()
        handler = _callback_handler(
            self, auth_url, redirect.path or "/", state, code_verifier, results
        )
        try:
            server = HTTPServer((redirect.hostname, redirect.port), handler)
        except OSError as exc:
            raise NetworkError(f"unable to start local call-back webserver: {exc}") from exc

        listener = threading.Thread(
            target=server.serve_forever, kwargs={"poll_interval": 0.1}, daemon=True
        )
        listener.start()
        debug(f"callback server listening on {redirect.hostname}:{redirect.port}")
        try:
            self._open_browser(auth_url)
            return _await_result(results, cancel, self.login_timeout)
        finally:
            server.shutdown()
            server.server_close()
            listener.join(timeout=5)

    def _open_browser(self, auth_url: str) -> None:
        if self.disable_browser_popup:
            info("Browser popup disabled. Please use this URL to authenticate:")
            print_data(auth_url)
            return

        def open_browser() -> None:
            try:
                opened = webbrowser.open(auth_url)
            except webbrowser.Error as exc:
                debug(f"unable to open browser: {exc}")
                opened = False
            if opened:
                info("Opening browser window to authenticate:")
            else:
                info("Unable to open browser. Please use this URL to authenticate:")
            print_data(auth_url)

        threading.Thread(target=open_browser, daemon=True).start()

    # ------------------------------------------------------------------ #
    # Manual paste
    # ------------------------------------------------------------------ #

    def auth_with_manual_input(self) -> OAuth2Token:
        """Authenticate by having the user paste the authorization code."""
        state = secrets.token_hex(24)
        original = self.config.redirect_uri
        self.config.redirect_uri = OOB_REDIRECT_URI
        try:
            auth_url = self.config.auth_code_url(state)
        finally:
            self.config.redirect_uri = original
        info("Go to the following link in your browser:")
        print_data(auth_url)
        try:
            code = input("Token: ").strip()
        except EOFError as exc:
            raise AuthError("failed to read token: no input") from exc
        if not code:
            raise AuthError("failed to read token: empty input")
        token = self.exchange(code, OOB_REDIRECT_URI)
        with self._lock:
            self._token = token
        return token


def _await_result(results: queue.Queue, cancel: threading.Event, timeout: float) -> OAuth2Token:
    deadline = time.monotonic() + timeout
    while True:
        if cancel.is_set():
            raise CancelledError_("login cancelled")
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise LoginTimeoutError("exceeded login deadline")
        try:
            result = results.get(timeout=min(0.2, remaining))
        except queue.Empty:
            continue
        if isinstance(result, Exception):
            raise result
        return result


def _callback_handler(
    client: OIDCClient,
    auth_url: str,
    callback_path: str,
    state: str,
    code_verifier: str,
    results: queue.Queue,
) -> type[BaseHTTPRequestHandler]:
    class CallbackHandler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:
            parsed = urlparse(self.path)
            if parsed.path == callback_path:
                self._handle_callback(parse_qs(parsed.query))
            elif parsed.path == "/":
                self.send_response(302)
                self.send_header("Location", auth_url)
                self.end_headers()
            else:
                self._reply(404, b"not found")

        def _handle_callback(self, params: dict[str, list[str]]) -> None:
            received = params.get("state", [""])[0]
            if not hmac.compare_digest(received.encode(), state.encode()):
                self._reply(400, b"state did not match")
                return

            if "error" in params:
                description = params.get("error_description", params["error"])[0]
                self._reply(400, f"authorization failed: {description}".encode())
                results.put(AuthError(f"authorization failed: {description}"))
                return

            try:
                token = client.exchange(
                    params.get("code", [""])[0],
                    client.config.redirect_uri,
                    code_verifier=code_verifier,
                )
            except OspreyError as exc:
                self._reply(500, f"failed to exchange token: {exc}".encode())
                results.put(exc)
                return

            self.send_response(200)
            self.send_header("Content-Type", "text/html; charset=utf-8")
            self.end_headers()
            self.wfile.write(_SUCCESS_PAGE)
            results.put(token)

        def _reply(self, status: int, body: bytes) -> None:
            self.send_response(status)
            self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format: str, *args: Any) -> None:
            pass

    return CallbackHandler
