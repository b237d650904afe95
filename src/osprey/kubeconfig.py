"""Read-modify-write access to the kubeconfig file.

:class:`KubeconfigStore` owns one kubeconfig path and merges login results
into it. For each target osprey writes one cluster, one user and one
context per name (the target name plus its aliases), all pointing at the
same cluster and user. Every key osprey does not own -- a context's
``namespace``, other clusters, ``preferences`` -- is carried over untouched.

The file is handled as plain YAML mappings; every write goes through
:func:`osprey.config.atomic_write`.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Optional

import jwt
import yaml

from osprey.config import atomic_write, default_kubeconfig_path
from osprey.exceptions import KubeconfigError, ProtocolError
from osprey.models import TargetInfo, UserInfo
from osprey.output import debug

OIDC_AUTH_PROVIDER = "oidc"


def _empty_config() -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [],
        "users": [],
        "contexts": [],
        "current-context": "",
        "preferences": {},
    }


def _find(entries: list[dict[str, Any]], name: str) -> Optional[dict[str, Any]]:
    for entry in entries:
        if isinstance(entry, dict) and entry.get("name") == name:
            return entry
    return None


def _upsert(entries: list[dict[str, Any]], name: str, key: str) -> dict[str, Any]:
    """Return the ``key`` body of the named entry, creating the entry if needed."""
    entry = _find(entries, name)
    if entry is None:
        entry = {"name": name, key: {}}
        entries.append(entry)
    if not isinstance(entry.get(key), dict):
        entry[key] = {}
    return entry[key]


def decode_claims(token: str) -> dict[str, Any]:
    """Return the claims of *token* without verifying its signature.

    Raises:
        ProtocolError: If *token* is not a decodable JWT.
    """
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as exc:
        raise ProtocolError(f"oidc: malformed jwt: {exc}") from exc


class KubeconfigStore:
    """A kubeconfig file that osprey merges login results into.

    Args:
        path: Kubeconfig location. Defaults to ``~/.kube/config``.
    """

    def __init__(self, path: Optional[str | Path] = None) -> None:
        self.path = Path(path).expanduser() if path else default_kubeconfig_path()

    def load(self) -> None:
        """Check that the kubeconfig parses. A missing file is fine.

        Raises:
            KubeconfigError: If the file exists but cannot be read or parsed.
        """
        self.get_config()

    def get_config(self) -> dict[str, Any]:
        """Return the parsed kubeconfig, or an empty one if the file is absent."""
        if not self.path.exists():
            return _empty_config()
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            raise KubeconfigError(f"failed to load kubeconfig from {self.path}: {exc}") from exc
        if data is None:
            return _empty_config()
        if not isinstance(data, dict):
            raise KubeconfigError(f"failed to load kubeconfig from {self.path}: expected a mapping")
        for key in ("clusters", "users", "contexts"):
            if data.get(key) is None:
                data[key] = []
            elif not isinstance(data[key], list):
                raise KubeconfigError(f"failed to load kubeconfig from {self.path}: {key} must be a list")
        return data

    def _write(self, config: dict[str, Any]) -> None:
        try:
            atomic_write(self.path, yaml.safe_dump(config, default_flow_style=False, sort_keys=False))
        except OSError as exc:
            raise KubeconfigError(f"failed to write kubeconfig {self.path}: {exc}") from exc

    def update(self, name: str, aliases: list[str], info: TargetInfo) -> None:
        """Merge the login result for target *name* into the kubeconfig.

        Writes the cluster and user named *name*, and one context for *name*
        and each alias. Existing context fields such as ``namespace`` are
        kept; only ``cluster`` and ``user`` are overwritten.
        """
        config = self.get_config()

        cluster = _upsert(config["clusters"], name, "cluster")
        cluster["server"] = info.cluster_api_server_url
        cluster.pop("certificate-authority", None)
        if info.cluster_ca:
            cluster["certificate-authority-data"] = info.cluster_ca
        else:
            cluster.pop("certificate-authority-data", None)

        user = _upsert(config["users"], name, "user")
        if info.access_token:
            user.pop("auth-provider", None)
            user["token"] = info.access_token
        else:
            user.pop("token", None)
            user["auth-provider"] = {
                "name": OIDC_AUTH_PROVIDER,
                "config": {
                    "client-id": info.client_id,
                    "client-secret": info.client_secret,
                    "id-token": info.id_token,
                    "idp-certificate-authority-data": info.issuer_ca,
                    "idp-issuer-url": info.issuer_url,
                    "access-token": "",
                },
            }

        for context_name in [name, *aliases]:
            context = _upsert(config["contexts"], context_name, "context")
            context["cluster"] = name
            context["user"] = name

        self._write(config)
        debug(f"kubeconfig {self.path}: updated {name} ({len(aliases)} aliases)")

    def remove(self, name: str) -> None:
        """Clear the stored token of user *name*, keeping the user entry.

        Does nothing if the user does not exist or holds no token.
        """
        config = self.get_config()
        entry = _find(config["users"], name)
        if entry is None or not isinstance(entry.get("user"), dict):
            return
        before = copy.deepcopy(entry)
        user = entry["user"]
        provider = user.get("auth-provider")
        if isinstance(provider, dict) and isinstance(provider.get("config"), dict):
            provider["config"]["id-token"] = ""
        if user.get("token"):
            user["token"] = ""
        if entry != before:
            self._write(config)

    def get_auth_info(self, name: str) -> Optional[dict[str, Any]]:
        """Return the user mapping stored for *name*, or ``None``.

        Users that carry neither a token nor an auth provider count as absent.
        """
        entry = _find(self.get_config()["users"], name)
        if entry is None or not isinstance(entry.get("user"), dict):
            return None
        user = entry["user"]
        if "token" not in user and not user.get("auth-provider"):
            return None
        return user

    def get_user(self, name: str) -> str:
        """Render the identity stored for *name* as ``email [group, ...]``.

        Returns ``"none"`` when the user is absent or logged out.

        Raises:
            KubeconfigError: If the user has no ``oidc`` auth provider.
            ProtocolError: If the stored id token is not a JWT.
        """
        entry = _find(self.get_config()["users"], name)
        if entry is None or not isinstance(entry.get("user"), dict):
            return "none"
        return user_from_auth_info(name, entry["user"]).render()


def user_from_auth_info(name: str, auth_info: dict[str, Any]) -> UserInfo:
    """Extract the identity from an oidc auth provider's id token."""
    provider = auth_info.get("auth-provider")
    if not provider:
        raise KubeconfigError("no authprovider configured, please 'osprey user login'")
    if provider.get("name") != OIDC_AUTH_PROVIDER:
        raise KubeconfigError(f"invalid authprovider {provider.get('name')} for target {name}")

    id_token = (provider.get("config") or {}).get("id-token", "")
    if not id_token:
        return UserInfo(username="none")

    try:
        claims = decode_claims(id_token)
    except ProtocolError as exc:
        raise ProtocolError(f"failed to parse user token for {name}: {exc}") from exc
    groups = claims.get("groups") or []
    if isinstance(groups, str):
        groups = [groups]
    return UserInfo(username=str(claims.get("email", "")), roles=[str(g) for g in groups])
