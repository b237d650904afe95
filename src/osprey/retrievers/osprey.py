"""Osprey server retriever.

Credentials are collected once per run and exchanged at
``POST <server>/access-token`` (HTTP Basic auth) for a protobuf
``LoginResponse`` carrying the cluster, issuer and id token.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from osprey import web
from osprey.exceptions import NetworkError
from osprey.kubeconfig import KubeconfigStore, user_from_auth_info
from osprey.models import LoginCredentials, TargetInfo, UserInfo
from osprey.output import debug
from osprey.pb import consume_login_response
from osprey.pb.messages import OCTET_STREAM
from osprey.retrievers.base import Retriever
from osprey.retrievers.credentials import get_credentials
from osprey.snapshot import Target


class OspreyRetriever(Retriever):
    """Authenticates against Osprey servers with a username and password."""

    def _login(self) -> LoginCredentials:
        return get_credentials(
            username=self.options.username,
            password=self.options.password,
            connector=self.options.connector,
        )

    def retrieve_cluster_details_and_auth_tokens(self, target: Target) -> TargetInfo:
        credentials: LoginCredentials = self._authenticate(self._login)
        url = f"{target.server.rstrip('/')}/access-token"
        params = {}
        if credentials.connector:
            debug(f"Overriding connector with {credentials.connector}")
            params["connector"] = credentials.connector

        try:
            with web.new_tls_client(
                self.provider.certificate_authority_data,
                target.certificate_authority_data,
                skip_verify=target.entry.skip_tls_verify,
                transport=self.options.transport,
            ) as http:
                response = http.post(
                    url,
                    params=params,
                    auth=(credentials.username, credentials.password),
                    headers={"Accept": OCTET_STREAM},
                )
        except httpx.HTTPError as exc:
            raise NetworkError(f"failed to retrieve access-token: {exc}") from exc

        login = consume_login_response(response)
        return TargetInfo(
            username=login.user.username,
            client_id=login.provider.client_id,
            client_secret=login.provider.client_secret,
            issuer_url=login.provider.issuer_url,
            issuer_ca=login.provider.issuer_ca,
            id_token=login.user.token,
            cluster_name=login.cluster.name,
            cluster_api_server_url=login.cluster.api_server_url,
            cluster_ca=login.cluster.api_server_ca,
        )

    def retrieve_user_details(self, target: Target, auth_info: dict[str, Any]) -> UserInfo:
        return user_from_auth_info(target.name, auth_info)

    def get_auth_info(self, store: KubeconfigStore, target: Target) -> Optional[dict[str, Any]]:
        auth_info = store.get_auth_info(target.name)
        if not auth_info or not auth_info.get("auth-provider"):
            return None
        return auth_info

    def set_use_device_code(self, value: bool) -> None:
        # No device-code flow for Osprey servers.
        pass
