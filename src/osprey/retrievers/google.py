"""Google retriever for GKE clusters.

The user logs in to Google (loopback callback, or a pasted code when
``--use-device-code`` is given). The access token is then used to look up
each target's endpoint and CA through the GKE Container API.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from osprey import web
from osprey.exceptions import AuthError, NetworkError, ProtocolError
from osprey.kubeconfig import KubeconfigStore
from osprey.models import TargetInfo, UserInfo
from osprey.oidc import OAuth2Config, OAuth2Token, OIDCClient, get_well_known_config
from osprey.retrievers.base import Retriever, RetrieverOptions
from osprey.snapshot import ProviderConfig, Target

GOOGLE_ISSUER_URL = "https://accounts.google.com/"
GOOGLE_USERINFO_ENDPOINT = "https://openidconnect.googleapis.com/v1/userinfo"
GKE_CLUSTER_ENDPOINT = "https://container.googleapis.com/v1/projects/{project}/locations/{location}/clusters/{cluster}"
GOOGLE_SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/cloud-platform",
]


class GoogleRetriever(Retriever):
    """Logs in to Google and resolves GKE cluster details per target."""

    def __init__(self, provider: ProviderConfig, options: Optional[RetrieverOptions] = None) -> None:
        super().__init__(provider, options)
        self._oidc: Optional[OIDCClient] = None

    def oidc_client(self) -> OIDCClient:
        if self._oidc is None:
            endpoint = get_well_known_config(
                self.provider.issuer_url or GOOGLE_ISSUER_URL,
                ca_data=self.provider.certificate_authority_data,
                transport=self.options.transport,
            )
            self._oidc = OIDCClient(
                OAuth2Config(
                    client_id=self.provider.client_id,
                    client_secret=self.provider.client_secret,
                    redirect_uri=self.provider.redirect_uri,
                    endpoint=endpoint,
                    scopes=list(self.provider.scopes) or list(GOOGLE_SCOPES),
                ),
                login_timeout=self.options.login_timeout,
                disable_browser_popup=self.options.disable_browser_popup,
                ca_data=self.provider.certificate_authority_data,
                transport=self.options.transport,
            )
        return self._oidc

    def _login(self) -> OAuth2Token:
        client = self.oidc_client()
        if self.options.use_device_code:
            return client.auth_with_manual_input()
        return client.token(self.cancel)

    def _get_json(self, url: str, access_token: str) -> dict[str, Any]:
        try:
            with web.new_tls_client(transport=self.options.transport) as http:
                response = http.get(
                    url,
                    headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            raise NetworkError(f"unable to make request to {url}: {exc}") from exc
        if response.status_code in (httpx.codes.UNAUTHORIZED, httpx.codes.FORBIDDEN):
            raise AuthError(f"{url} refused the access token: {response.status_code} {response.text}")
        if response.status_code != httpx.codes.OK:
            raise ProtocolError(f"{url} returned {response.status_code}: {response.text}")
        try:
            return response.json()
        except ValueError as exc:
            raise ProtocolError(f"unable to unmarshal response from {url}: {exc}") from exc

    def retrieve_cluster_details_and_auth_tokens(self, target: Target) -> TargetInfo:
        token: OAuth2Token = self._authenticate(self._login)
        url = GKE_CLUSTER_ENDPOINT.format(
            project=target.entry.project_id,
            location=target.entry.location,
            cluster=target.entry.cluster_id,
        )
        cluster = self._get_json(url, token.access_token)
        endpoint = cluster.get("endpoint")
        if not endpoint:
            raise ProtocolError(f"gke cluster {target.entry.cluster_id} has no endpoint")
        return TargetInfo(
            cluster_name=target.name,
            cluster_api_server_url=f"https://{endpoint}",
            cluster_ca=(cluster.get("masterAuth") or {}).get("clusterCaCertificate", ""),
            access_token=token.access_token,
        )

    def retrieve_user_details(self, target: Target, auth_info: dict[str, Any]) -> UserInfo:
        user = self._get_json(GOOGLE_USERINFO_ENDPOINT, auth_info.get("token", ""))
        return UserInfo(username=str(user.get("email", "")))

    def get_auth_info(self, store: KubeconfigStore, target: Target) -> Optional[dict[str, Any]]:
        auth_info = store.get_auth_info(target.name)
        if not auth_info or not auth_info.get("token"):
            return None
        return auth_info
