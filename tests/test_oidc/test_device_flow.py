"""Tests for the OAuth2 device authorization grant."""

from __future__ import annotations

import json
import threading
from urllib.parse import parse_qs

import httpx
import pytest

from osprey.exceptions import AuthError, CancelledError_, LoginTimeoutError, ProtocolError
from osprey.oidc import Endpoint, OAuth2Config, OIDCClient
from osprey.oidc import device

AUTH_URL = "https://login.example.com/tenant/oauth2/authorize"
TOKEN_URL = "https://login.example.com/tenant/oauth2/token"


class FakeIdP:
    """Serves a device authorization and then the queued token responses."""

    def __init__(self, token_responses: list[dict], interval: int = 1, expires_in: int = 900) -> None:
        self.token_responses = list(token_responses)
        self.interval = interval
        self.expires_in = expires_in
        self.token_requests: list[dict[str, list[str]]] = []
        self.device_requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/devicecode"):
            self.device_requests.append(request)
            return httpx.Response(
                200,
                json={
                    "device_code": "dev-code",
                    "user_code": "ABCD-EFGH",
                    "verification_uri": "https://microsoft.com/devicelogin",
                    "expires_in": self.expires_in,
                    "interval": self.interval,
                    "message": "To sign in, use a web browser to open the page and enter ABCD-EFGH",
                },
            )
        self.token_requests.append(parse_qs(request.content.decode()))
        body = self.token_responses.pop(0)
        status = 200 if "access_token" in body else 400
        return httpx.Response(status, content=json.dumps(body).encode(), headers={"Content-Type": "application/json"})


def _client(idp: FakeIdP, **kwargs) -> OIDCClient:
    config = OAuth2Config(
        client_id="client",
        client_secret="secret",
        redirect_uri="http://localhost:65525/auth/callback",
        endpoint=Endpoint(auth_url=AUTH_URL, token_url=TOKEN_URL),
        scopes=["api://server/.default"],
    )
    return OIDCClient(config, use_device_code=True, transport=httpx.MockTransport(idp), **kwargs)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def monotonic(self) -> float:
        return self.now


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Record device-flow sleeps and advance a fake clock instead of sleeping."""
    recorded: list[float] = []
    clock = FakeClock()

    def fake_wait(cancel: threading.Event, seconds: float) -> bool:
        recorded.append(seconds)
        clock.now += seconds
        return cancel.is_set()

    monkeypatch.setattr(device, "_wait", fake_wait)
    monkeypatch.setattr(device, "time", clock)
    return recorded


PENDING = {"error": "authorization_pending"}
SLOW_DOWN = {"error": "slow_down"}
SUCCESS = {"access_token": "access", "id_token": "id", "token_type": "Bearer", "expires_in": 3600}


class TestPolling:
    def test_pending_twice_then_success(self, sleeps: list[float], quiet_output) -> None:
        idp = FakeIdP([PENDING, PENDING, SUCCESS])
        token = _client(idp).token()
        assert token.access_token == "access"
        assert len(idp.token_requests) == 3
        assert sleeps == [1, 1, 1]

    def test_instructions_go_to_stdout(self, sleeps: list[float], quiet_output, capsys) -> None:
        _client(FakeIdP([SUCCESS])).token()
        captured = capsys.readouterr()
        assert captured.out == "To sign in, use a web browser to open the page and enter ABCD-EFGH\n"
        assert captured.err == ""

    def test_slow_down_adds_five_seconds(self, sleeps: list[float], quiet_output) -> None:
        idp = FakeIdP([SLOW_DOWN, PENDING, SUCCESS])
        _client(idp).token()
        assert sleeps == [1, 6, 6]
        assert sum(sleeps) >= 1 + 6 + 6

    def test_token_request_form(self, sleeps: list[float], quiet_output) -> None:
        idp = FakeIdP([SUCCESS])
        _client(idp, server_application_id="api://server").token()
        form = idp.token_requests[0]
        assert form["grant_type"] == [device.DEVICE_CODE_GRANT]
        assert form["device_code"] == ["dev-code"]
        assert form["resource"] == ["spn:api://server"]
        assert form["client_id"] == ["client"]

    @pytest.mark.parametrize("error", ["authorization_declined", "access_denied", "expired_token", "bad_verification_code"])
    def test_fatal_errors(self, sleeps: list[float], quiet_output, error: str) -> None:
        idp = FakeIdP([PENDING, {"error": error}])
        with pytest.raises(AuthError, match=f"failed to fetch device-flow token: oauth2: {error}"):
            _client(idp).token()
        assert len(idp.token_requests) == 2

    def test_unknown_error(self, sleeps: list[float], quiet_output) -> None:
        idp = FakeIdP([{"error": "server_error"}])
        with pytest.raises(ProtocolError, match="invalid response from device-code endpoint"):
            _client(idp).token()

    def test_deadline_is_min_of_timeout_and_expiry(self, sleeps: list[float], quiet_output) -> None:
        idp = FakeIdP([PENDING] * 10, interval=5, expires_in=12)
        with pytest.raises(LoginTimeoutError):
            _client(idp).token()
        assert len(idp.token_requests) == 2

    def test_cancel(self, sleeps: list[float], quiet_output) -> None:
        idp = FakeIdP([PENDING])
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(CancelledError_):
            _client(idp).token(cancel)
        assert idp.token_requests == []


class TestDeviceAuthorization:
    def test_azure_endpoint_is_derived(self, sleeps: list[float], quiet_output) -> None:
        idp = FakeIdP([SUCCESS])
        _client(idp).token()
        url = idp.device_requests[0].url
        assert url.path == "/tenant/oauth2/v2.0/devicecode"
        assert url.params["state"] == device.DEVICE_STATE
        assert "redirect_uri" not in url.params

    def test_advertised_endpoint_wins(self) -> None:
        client = _client(FakeIdP([]))
        client.config.endpoint.device_auth_url = "https://idp.example.com/device"
        assert device.device_authorization_url(client) == "https://idp.example.com/device"

    def test_instructions_fall_back_to_uri_and_code(self) -> None:
        auth = device.DeviceFlowAuth.from_response(
            {"device_code": "d", "user_code": "CODE", "verification_url": "https://google.com/device"}
        )
        assert auth.instructions() == "To sign in, open https://google.com/device and enter the code CODE"

    def test_missing_device_code(self) -> None:
        with pytest.raises(ProtocolError, match="device_code"):
            device.DeviceFlowAuth.from_response({"user_code": "x"})
