"""Azure AD retriever.

Tokens come from the tenant's OIDC endpoints (loopback or device code).
The API server address and CA are resolved in one of three ways:

* ``use-gke-clientconfig`` -- the GKE ``ClientConfig`` published in
  ``kube-public`` on ``api-server``.
* ``api-server`` only -- the ``kube-root-ca.crt`` ConfigMap in
  ``kube-public``; the URL is ``api-server`` itself.
* otherwise -- ``GET <server>/cluster-info`` on an Osprey server. When the
  answer carries no URL, ``server`` is used verbatim.
"""

from __future__ import annotations

import base64
from typing import Any, Optional

import httpx

from osprey import web
from osprey.exceptions import AuthError, NetworkError, ProtocolError
from osprey.kubeconfig import KubeconfigStore, decode_claims
from osprey.models import TargetInfo, UserInfo
from osprey.oidc import OAuth2Config, OAuth2Token, OIDCClient, get_well_known_config
from osprey.output import debug
from osprey.pb import consume_cluster_info_response
from osprey.pb.messages import OCTET_STREAM
from osprey.retrievers.base import Retriever, RetrieverOptions
from osprey.snapshot import ProviderConfig, Target

AZURE_LOGIN_URL = "https://login.microsoftonline.com"
WELL_KNOWN_CONFIGURATION_URI = "v2.0/.well-known/openid-configuration"
GKE_CLIENTCONFIG_API = "apis/authentication.gke.io/v2alpha1"
KUBE_PUBLIC = "kube-public"


def azure_issuer_url(provider: ProviderConfig) -> str:
    """Return the tenant's discovery document URL."""
    base = provider.issuer_url.rstrip("/") if provider.issuer_url else f"{AZURE_LOGIN_URL}/{provider.tenant_id}"
    return f"{base}/{WELL_KNOWN_CONFIGURATION_URI}"


def kube_public_url(api_server: str, api_path: str, resource: str, name: str) -> str:
    return f"{api_server.rstrip('/')}/{api_path}/namespaces/{KUBE_PUBLIC}/{resource}/{name}"


def check_token_for_groups_claim(access_token: str) -> None:
    """Reject tokens whose group list overflowed into a claims source."""
    claims = decode_claims(access_token)
    if "groups" not in claims and "_claim_names" in claims:
        raise AuthError("users with more than 200 groups are not supported")


class AzureRetriever(Retriever):
    """Logs in to Azure AD and resolves cluster details per target."""

    def __init__(self, provider: ProviderConfig, options: Optional[RetrieverOptions] = None) -> None:
        super().__init__(provider, options)
        self._oidc: Optional[OIDCClient] = None

    def oidc_client(self) -> OIDCClient:
        if self._oidc is None:
            endpoint = get_well_known_config(
                azure_issuer_url(self.provider),
                ca_data=self.provider.certificate_authority_data,
                transport=self.options.transport,
            )
            self._oidc = OIDCClient(
                OAuth2Config(
                    client_id=self.provider.client_id,
                    client_secret=self.provider.client_secret,
                    redirect_uri=self.provider.redirect_uri,
                    endpoint=endpoint,
                    scopes=list(self.provider.scopes),
                ),
                login_timeout=self.options.login_timeout,
                use_device_code=self.options.use_device_code,
                disable_browser_popup=self.options.disable_browser_popup,
                server_application_id=self.provider.server_application_id,
                ca_data=self.provider.certificate_authority_data,
                transport=self.options.transport,
            )
        return self._oidc

    def set_use_device_code(self, value: bool) -> None:
        super().set_use_device_code(value)
        if self._oidc is not None:
            self._oidc.use_device_code = value

    def _login(self) -> OAuth2Token:
        token = self.oidc_client().token(self.cancel)
        check_token_for_groups_claim(token.access_token)
        return token

    def retrieve_cluster_details_and_auth_tokens(self, target: Target) -> TargetInfo:
        token: OAuth2Token = self._authenticate(self._login)

        if target.entry.use_gke_clientconfig:
            api_server_url, api_server_ca = self._from_gke_clientconfig(target)
        elif target.api_server:
            api_server_url, api_server_ca = self._from_ca_configmap(target)
        else:
            api_server_url, api_server_ca = self._from_cluster_info(target)

        return TargetInfo(
            cluster_name=target.name,
            cluster_api_server_url=api_server_url,
            cluster_ca=api_server_ca,
            access_token=token.access_token,
        )

    def _get(self, url: str, *cas: str, skip_verify: bool, accept: str = "application/json") -> httpx.Response:
        debug(f"azure: GET {url}")
        try:
            with web.new_tls_client(*cas, skip_verify=skip_verify, transport=self.options.transport) as http:
                return http.get(url, headers={"Accept": accept})
        except httpx.HTTPError as exc:
            raise NetworkError(f"failed to retrieve {url}: {exc}") from exc

    def _get_json(self, url: str, target: Target, what: str) -> dict[str, Any]:
        response = self._get(url, skip_verify=target.entry.skip_tls_verify)
        if response.status_code != httpx.codes.OK:
            raise ProtocolError(
                f"error fetching {what} from API Server: {response.status_code} {response.reason_phrase}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ProtocolError(f"failed to parse {what} response: {exc}") from exc

    def _from_gke_clientconfig(self, target: Target) -> tuple[str, str]:
        url = kube_public_url(target.api_server, GKE_CLIENTCONFIG_API, "clientconfigs", "default")
        spec = self._get_json(url, target, "ClientConfig").get("spec") or {}
        return spec.get("server", ""), spec.get("certificateAuthorityData", "")

    def _from_ca_configmap(self, target: Target) -> tuple[str, str]:
        url = kube_public_url(target.api_server, "api/v1", "configmaps", "kube-root-ca.crt")
        data = self._get_json(url, target, "CA ConfigMap").get("data") or {}
        ca = data.get("ca.crt", "")
        return target.api_server, base64.b64encode(ca.encode("utf-8")).decode("ascii")

    def _from_cluster_info(self, target: Target) -> tuple[str, str]:
        url = f"{target.server.rstrip('/')}/cluster-info"
        response = self._get(
            url,
            self.provider.certificate_authority_data,
            target.certificate_authority_data,
            skip_verify=target.entry.skip_tls_verify,
            accept=OCTET_STREAM,
        )
        cluster = consume_cluster_info_response(response).cluster
        return cluster.api_server_url or target.server, cluster.api_server_ca

    def retrieve_user_details(self, target: Target, auth_info: dict[str, Any]) -> UserInfo:
        try:
            claims = decode_claims(auth_info.get("token", ""))
        except ProtocolError as exc:
            raise ProtocolError(f"failed to parse user token for {target.name}: {exc}") from exc
        if claims.get("unique_name") is None:
            raise ProtocolError("jwt does not contain the 'unique_name' field")
        return UserInfo(username=str(claims["unique_name"]))

    def get_auth_info(self, store: KubeconfigStore, target: Target) -> Optional[dict[str, Any]]:
        auth_info = store.get_auth_info(target.name)
        if not auth_info or not auth_info.get("token"):
            return None
        return auth_info
