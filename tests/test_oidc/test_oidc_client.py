"""Tests for the OIDC client: token requests, loopback callback and manual paste."""

from __future__ import annotations

import base64
import hashlib
import socket
import threading
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from osprey.exceptions import AuthError, CancelledError_, LoginTimeoutError, NetworkError, TokenRequestError
from osprey.oidc import Endpoint, OAuth2Config, OIDCClient, generate_pkce_pair
from osprey.oidc.client import OOB_REDIRECT_URI


def _free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class TokenEndpoint:
    def __init__(self, status: int = 200, body: dict | None = None) -> None:
        self.status = status
        self.body = body if body is not None else {"access_token": "access", "id_token": "id", "expires_in": 60}
        self.forms: list[dict[str, list[str]]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.forms.append(parse_qs(request.content.decode()))
        return httpx.Response(self.status, json=self.body)


def _client(endpoint: TokenEndpoint, redirect_uri: str = "http://127.0.0.1:65525/auth/callback", **kwargs) -> OIDCClient:
    config = OAuth2Config(
        client_id="client",
        client_secret="secret",
        redirect_uri=redirect_uri,
        endpoint=Endpoint(auth_url="https://idp.example.com/authorize", token_url="https://idp.example.com/token"),
        scopes=["openid", "email"],
    )
    return OIDCClient(config, transport=httpx.MockTransport(endpoint), **kwargs)


class TestAuthCodeUrl:
    def test_parameters(self) -> None:
        url = urlparse(_client(TokenEndpoint()).config.auth_code_url("s1", prompt="login"))
        params = parse_qs(url.query)
        assert params == {
            "client_id": ["client"],
            "response_type": ["code"],
            "redirect_uri": ["http://127.0.0.1:65525/auth/callback"],
            "scope": ["openid email"],
            "state": ["s1"],
            "prompt": ["login"],
        }

    def test_pkce_pair(self) -> None:
        verifier, challenge = generate_pkce_pair()
        expected = base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest()).rstrip(b"=").decode()
        assert challenge == expected


class TestRequestToken:
    def test_success_sends_client_credentials(self) -> None:
        endpoint = TokenEndpoint()
        token = _client(endpoint).exchange("the-code", "http://127.0.0.1:65525/auth/callback")
        assert token.access_token == "access"
        assert token.id_token == "id"
        assert token.expiry is not None
        form = endpoint.forms[0]
        assert form["client_secret"] == ["secret"]
        assert form["code"] == ["the-code"]
        assert form["grant_type"] == ["authorization_code"]

    def test_oauth_error(self) -> None:
        endpoint = TokenEndpoint(400, {"error": "invalid_grant", "error_description": "code expired"})
        with pytest.raises(TokenRequestError, match="code expired") as excinfo:
            _client(endpoint).exchange("c", "r")
        assert excinfo.value.error_code == "invalid_grant"

    def test_connection_failure(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        config = _client(TokenEndpoint()).config
        client = OIDCClient(config, transport=httpx.MockTransport(refuse))
        with pytest.raises(NetworkError, match="token request"):
            client.exchange("c", "r")


class TestLoopback:
    @pytest.fixture
    def port(self) -> int:
        return _free_port()

    def _browser(self, monkeypatch: pytest.MonkeyPatch, port: int, responses: list, states=None) -> None:
        """Replace the browser with a thread that follows the callback like the IdP would."""

        def fake_open(client: OIDCClient, auth_url: str) -> None:
            state = parse_qs(urlparse(auth_url).query)["state"][0]

            def hit() -> None:
                for sent_state in states or [state]:
                    url = f"http://127.0.0.1:{port}/auth/callback?code=the-code&state={sent_state or state}"
                    responses.append(httpx.get(url, trust_env=False))

            threading.Thread(target=hit, daemon=True).start()

        monkeypatch.setattr(OIDCClient, "_open_browser", fake_open)

    def test_code_is_exchanged_with_pkce(self, monkeypatch: pytest.MonkeyPatch, port: int, quiet_output) -> None:
        endpoint = TokenEndpoint()
        responses: list[httpx.Response] = []
        self._browser(monkeypatch, port, responses)
        client = _client(endpoint, redirect_uri=f"http://127.0.0.1:{port}/auth/callback", login_timeout=10)

        token = client.token()

        assert token.access_token == "access"
        assert client.authenticated
        assert endpoint.forms[0]["code"] == ["the-code"]
        assert len(endpoint.forms[0]["code_verifier"][0]) == 64
        assert client.token() is token
        assert len(endpoint.forms) == 1

    def test_state_mismatch_is_rejected_and_ignored(
        self, monkeypatch: pytest.MonkeyPatch, port: int, quiet_output
    ) -> None:
        responses: list[httpx.Response] = []
        self._browser(monkeypatch, port, responses, states=["forged", None])
        client = _client(TokenEndpoint(), redirect_uri=f"http://127.0.0.1:{port}/auth/callback", login_timeout=10)

        client.token()

        assert responses[0].status_code == 400
        assert responses[0].text == "state did not match"

    def test_idp_error_fails_login(self, monkeypatch: pytest.MonkeyPatch, port: int, quiet_output) -> None:
        def fake_open(client: OIDCClient, auth_url: str) -> None:
            state = parse_qs(urlparse(auth_url).query)["state"][0]
            threading.Thread(
                target=httpx.get,
                args=(f"http://127.0.0.1:{port}/auth/callback?error=access_denied&state={state}",),
                kwargs={"trust_env": False},
                daemon=True,
            ).start()

        monkeypatch.setattr(OIDCClient, "_open_browser", fake_open)
        client = _client(TokenEndpoint(), redirect_uri=f"http://127.0.0.1:{port}/auth/callback", login_timeout=10)
        with pytest.raises(AuthError, match="access_denied"):
            client.token()

    def test_timeout_releases_port(self, monkeypatch: pytest.MonkeyPatch, port: int, quiet_output) -> None:
        monkeypatch.setattr(OIDCClient, "_open_browser", lambda client, url: None)
        client = _client(TokenEndpoint(), redirect_uri=f"http://127.0.0.1:{port}/auth/callback", login_timeout=0.3)
        with pytest.raises(LoginTimeoutError):
            client.token()
        with socket.socket() as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("127.0.0.1", port))

    def test_cancel_stops_login_and_releases_port(
        self, monkeypatch: pytest.MonkeyPatch, port: int, quiet_output
    ) -> None:
        monkeypatch.setattr(OIDCClient, "_open_browser", lambda client, url: None)
        client = _client(TokenEndpoint(), redirect_uri=f"http://127.0.0.1:{port}/auth/callback", login_timeout=10)
        cancel = threading.Event()
        timer = threading.Timer(0.3, cancel.set)
        timer.start()
        try:
            with pytest.raises(CancelledError_, match="login cancelled"):
                client.auth_with_callback(cancel)
        finally:
            timer.cancel()
        assert not client.authenticated
        with socket.socket() as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("127.0.0.1", port))

    def test_disabled_popup_prints_url(self, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
        opened: list[str] = []
        monkeypatch.setattr("webbrowser.open", opened.append)
        client = _client(TokenEndpoint(), disable_browser_popup=True)
        client._open_browser("https://idp.example.com/authorize?x=1")
        assert opened == []
        captured = capsys.readouterr()
        assert captured.out == "https://idp.example.com/authorize?x=1\n"
        assert "Browser popup disabled" in captured.err


class TestManualInput:
    def test_pasted_code_is_exchanged(self, monkeypatch: pytest.MonkeyPatch, quiet_output) -> None:
        endpoint = TokenEndpoint()
        monkeypatch.setattr("builtins.input", lambda prompt: " pasted \n")
        client = _client(endpoint)
        token = client.auth_with_manual_input()
        assert token.access_token == "access"
        assert endpoint.forms[0]["code"] == ["pasted"]
        assert endpoint.forms[0]["redirect_uri"] == [OOB_REDIRECT_URI]
        assert client.config.redirect_uri == "http://127.0.0.1:65525/auth/callback"
        assert client.authenticated

    def test_empty_input(self, monkeypatch: pytest.MonkeyPatch, quiet_output) -> None:
        monkeypatch.setattr("builtins.input", lambda prompt: "")
        with pytest.raises(AuthError, match="empty input"):
            _client(TokenEndpoint()).auth_with_manual_input()
