"""Tests for the Osprey server retriever and credential prompting."""

from __future__ import annotations

import base64
import io

import httpx
import pytest
from google.rpc import code_pb2, status_pb2

from osprey.exceptions import AuthError, ProtocolError, UnauthenticatedError
from osprey.kubeconfig import KubeconfigStore
from osprey.models import TargetEntry, TargetInfo
from osprey.pb import Cluster, LoginResponse, Provider, User
from osprey.pb.messages import OCTET_STREAM
from osprey.retrievers import OspreyRetriever, RetrieverOptions, RetrieverState
from osprey.retrievers import credentials as credentials_module
from osprey.retrievers.credentials import get_credentials
from osprey.snapshot import ProviderConfig, Target

PROVIDER = ProviderConfig(kind="osprey", name="provider-0")


def _target(name: str = "kubectl.dev", server: str = "https://osprey.dev.example.com") -> Target:
    return Target(name=name, entry=TargetEntry(server=server, aliases=["alias.dev"]), provider=PROVIDER.key)


class OspreyServer:
    def __init__(self, id_token: str = "id-token") -> None:
        self.id_token = id_token
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        message = LoginResponse(
            cluster=Cluster(name="dev", api_server_url="https://api.dev", api_server_ca="Y2E="),
            user=User(username="jane", token=self.id_token),
            provider=Provider(client_id="kubectl", client_secret="s", issuer_url="https://dex.dev", issuer_ca="aQ=="),
        )
        return httpx.Response(200, content=message.SerializeToString(), headers={"Content-Type": OCTET_STREAM})


def _retriever(server, **options) -> OspreyRetriever:
    options.setdefault("username", "jane")
    options.setdefault("password", "secret")
    return OspreyRetriever(PROVIDER, RetrieverOptions(transport=httpx.MockTransport(server), **options))


class TestRetrieveClusterDetails:
    def test_maps_login_response(self) -> None:
        info = _retriever(OspreyServer()).retrieve_cluster_details_and_auth_tokens(_target())
        assert info == TargetInfo(
            username="jane",
            cluster_name="dev",
            cluster_api_server_url="https://api.dev",
            cluster_ca="Y2E=",
            issuer_url="https://dex.dev",
            issuer_ca="aQ==",
            client_id="kubectl",
            client_secret="s",
            id_token="id-token",
        )

    def test_request_shape(self) -> None:
        server = OspreyServer()
        _retriever(server, connector="ldap").retrieve_cluster_details_and_auth_tokens(_target())
        request = server.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/access-token"
        assert request.url.params["connector"] == "ldap"
        assert request.headers["Accept"] == OCTET_STREAM
        expected = base64.b64encode(b"jane:secret").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"

    def test_no_connector_param_by_default(self) -> None:
        server = OspreyServer()
        _retriever(server).retrieve_cluster_details_and_auth_tokens(_target())
        assert "connector" not in server.requests[0].url.params

    def test_credentials_prompted_once(self, monkeypatch: pytest.MonkeyPatch) -> None:
        calls: list[tuple] = []

        def fake_credentials(**kwargs):
            calls.append(kwargs)
            return get_credentials("jane", "secret")

        monkeypatch.setattr("osprey.retrievers.osprey.get_credentials", fake_credentials)
        retriever = OspreyRetriever(PROVIDER, RetrieverOptions(transport=httpx.MockTransport(OspreyServer())))
        retriever.retrieve_cluster_details_and_auth_tokens(_target("a"))
        retriever.retrieve_cluster_details_and_auth_tokens(_target("b"))
        assert len(calls) == 1
        assert retriever.state is RetrieverState.AUTHENTICATED

    def test_unauthenticated(self) -> None:
        def reject(request: httpx.Request) -> httpx.Response:
            body = status_pb2.Status(code=code_pb2.UNAUTHENTICATED, message="invalid credentials")
            return httpx.Response(401, content=body.SerializeToString(), headers={"Content-Type": OCTET_STREAM})

        with pytest.raises(UnauthenticatedError):
            _retriever(reject).retrieve_cluster_details_and_auth_tokens(_target())

    def test_shut_retriever_refuses_work(self) -> None:
        retriever = _retriever(OspreyServer())
        retriever.shutdown()
        assert retriever.state is RetrieverState.SHUT
        assert retriever.cancel.is_set()
        with pytest.raises(ProtocolError, match="shut down"):
            retriever.retrieve_cluster_details_and_auth_tokens(_target())


class TestUserDetails:
    def test_reads_stored_id_token(self, tmp_path, make_jwt) -> None:
        store = KubeconfigStore(tmp_path / "kubeconfig")
        token = make_jwt(email="jane@example.com", groups=["admins"])
        retriever = _retriever(OspreyServer(id_token=token))
        target = _target()
        store.update(target.name, target.aliases, retriever.retrieve_cluster_details_and_auth_tokens(target))

        auth_info = retriever.get_auth_info(store, target)
        assert retriever.retrieve_user_details(target, auth_info).render() == "jane@example.com [admins]"

    def test_token_users_are_not_osprey_users(self, tmp_path) -> None:
        store = KubeconfigStore(tmp_path / "kubeconfig")
        store.update("kubectl.dev", [], TargetInfo(access_token="abc"))
        assert _retriever(OspreyServer()).get_auth_info(store, _target()) is None


class TestGetCredentials:
    def test_flags_skip_prompts(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("sys.stdin", io.StringIO(""))
        creds = get_credentials("jane", "secret", "ldap")
        assert (creds.username, creds.password, creds.connector) == ("jane", "secret", "ldap")

    def test_reads_piped_stdin(self, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
        monkeypatch.setattr("sys.stdin", io.StringIO("jane\nsecret\n"))
        creds = get_credentials()
        assert (creds.username, creds.password) == ("jane", "secret")
        assert "Username: " in capsys.readouterr().err

    def test_hidden_password_on_tty(self, monkeypatch: pytest.MonkeyPatch) -> None:
        class TtyInput(io.StringIO):
            def isatty(self) -> bool:
                return True

        monkeypatch.setattr("sys.stdin", TtyInput("jane\n"))
        monkeypatch.setattr(credentials_module.getpass, "getpass", lambda prompt: "hidden")
        assert get_credentials().password == "hidden"

    def test_eof(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("sys.stdin", io.StringIO(""))
        with pytest.raises(AuthError, match="failed to read username"):
            get_credentials()

    def test_password_is_not_in_repr(self) -> None:
        assert "secret" not in repr(get_credentials("jane", "secret"))
