"""Canonical Pydantic models for the ospreyconfig file.

This is the single source of truth for the shape of the config on disk.
Two versions of the file exist:

**v2** (``apiVersion: v2``) -- each provider kind holds a *sequence* of
provider entries, each with its own ``targets`` mapping::

    apiVersion: v2
    kubeconfig: ~/.kube/config
    default-group: dev
    providers:
      osprey:
        - name: corp
          certificate-authority: /etc/osprey/ca.pem
          targets:
            kubectl.dev:
              server: https://osprey.dev.example.com
              aliases: [dev]
              groups: [dev]
      azure:
        - tenant-id: ...
          targets: {...}

**Legacy** (no ``apiVersion``, or anything other than ``v2``) -- each
provider kind holds a single entry. :meth:`LegacyConfig.upgrade` re-homes
the legacy object model into a v2 :class:`Config`; the conversion is never
persisted.

Keys on disk are kebab-case; every model is declared with
:func:`_kebab` as its alias generator and ``populate_by_name=True`` so that
code can construct models with the Python attribute names.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

API_VERSION_V2 = "v2"

OSPREY_PROVIDER = "osprey"
AZURE_PROVIDER = "azure"
GOOGLE_PROVIDER = "google"

PROVIDER_KINDS = (OSPREY_PROVIDER, AZURE_PROVIDER, GOOGLE_PROVIDER)


def _kebab(name: str) -> str:
    return name.replace("_", "-")


_MODEL_CONFIG = ConfigDict(
    alias_generator=_kebab,
    populate_by_name=True,
    extra="ignore",
)


def _unique(values: list[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


# --- Targets ---


class TargetEntry(BaseModel):
    """Addressing information for one logical cluster.

    Exactly one of ``certificate_authority`` (path) and
    ``certificate_authority_data`` (base64 PEM) is effective once the config
    has been normalised by :func:`osprey.config.load_config`; data always
    wins over the path.
    """

    model_config = _MODEL_CONFIG

    server: str = ""
    api_server: str = ""
    use_gke_clientconfig: bool = False
    skip_tls_verify: bool = False
    certificate_authority: str = ""
    certificate_authority_data: str = ""
    aliases: list[str] = Field(default_factory=list)
    groups: list[str] = Field(default_factory=list)
    # GKE addressing used by the google provider
    project_id: str = ""
    location: str = ""
    cluster_id: str = ""

    @field_validator("aliases", "groups", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Optional[list[str]]) -> list[str]:
        return list(value or [])

    @field_validator("aliases", "groups")
    @classmethod
    def _dedupe(cls, value: list[str]) -> list[str]:
        return _unique(value)


# --- Providers ---


class ProviderEntry(BaseModel):
    """Fields shared by every provider kind."""

    model_config = _MODEL_CONFIG

    name: str = ""
    certificate_authority: str = ""
    certificate_authority_data: str = ""
    targets: dict[str, TargetEntry] = Field(default_factory=dict)

    @field_validator("targets", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Optional[dict]) -> dict:
        return dict(value or {})


class OspreyProviderConfig(ProviderEntry):
    """An Osprey server fleet. Targets must carry ``server``."""


class AzureProviderConfig(ProviderEntry):
    """An Azure AD tenant used as the OIDC issuer for its targets."""

    server_application_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = ""
    scopes: list[str] = Field(default_factory=list)
    tenant_id: str = ""
    issuer_url: str = ""


class GoogleProviderConfig(ProviderEntry):
    """Google as the OIDC issuer for GKE targets."""

    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = ""
    scopes: list[str] = Field(default_factory=list)
    issuer_url: str = ""


class Providers(BaseModel):
    """Provider entries by kind, in declaration order within each kind."""

    model_config = _MODEL_CONFIG

    osprey: list[OspreyProviderConfig] = Field(default_factory=list)
    azure: list[AzureProviderConfig] = Field(default_factory=list)
    google: list[GoogleProviderConfig] = Field(default_factory=list)

    @field_validator("osprey", "azure", "google", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Optional[list]) -> list:
        return list(value or [])

    def by_kind(self) -> list[tuple[str, list[ProviderEntry]]]:
        """Return ``(kind, entries)`` pairs in the fixed kind order."""
        return [
            (OSPREY_PROVIDER, list(self.osprey)),
            (AZURE_PROVIDER, list(self.azure)),
            (GOOGLE_PROVIDER, list(self.google)),
        ]


# --- Root config ---


class Config(BaseModel):
    """The v2 ospreyconfig, and the in-memory shape of every loaded config."""

    model_config = _MODEL_CONFIG

    api_version: str = Field(default=API_VERSION_V2, alias="apiVersion")
    kubeconfig: str = ""
    default_group: str = ""
    providers: Providers = Field(default_factory=Providers)

    @field_validator("providers", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return value if value is not None else {}

    def group_or_default(self, group: str) -> str:
        """Return *group* if it is not empty, or :attr:`default_group` otherwise."""
        return group or self.default_group

    def all_targets(self) -> list[tuple[str, TargetEntry]]:
        """Every ``(name, target)`` pair in the config, in declaration order."""
        pairs = []
        for _, entries in self.providers.by_kind():
            for entry in entries:
                pairs.extend(entry.targets.items())
        return pairs

    def snapshot(self):
        """Return an immutable :class:`~osprey.snapshot.ConfigSnapshot` of this config."""
        from osprey.snapshot import build_snapshot

        return build_snapshot(self)


class ApiVersionProbe(BaseModel):
    """The tiny shape used to detect which parser a config file needs."""

    model_config = ConfigDict(extra="ignore")

    api_version: Any = Field(default=None, alias="apiVersion")


class LegacyProviders(BaseModel):
    """Single provider entry per kind.

    Deprecated: use the v2 :class:`Providers` format instead.
    """

    model_config = _MODEL_CONFIG

    osprey: Optional[OspreyProviderConfig] = None
    azure: Optional[AzureProviderConfig] = None
    google: Optional[GoogleProviderConfig] = None


class LegacyConfig(BaseModel):
    """The v1 ospreyconfig.

    The oldest files carry Osprey ``targets`` and a global CA at the top
    level instead of under ``providers.osprey``.

    Deprecated: use the v2 :class:`Config` format instead.
    """

    model_config = _MODEL_CONFIG

    kubeconfig: str = ""
    default_group: str = ""
    certificate_authority: str = ""
    certificate_authority_data: str = ""
    targets: dict[str, TargetEntry] = Field(default_factory=dict)
    providers: LegacyProviders = Field(default_factory=LegacyProviders)

    @field_validator("providers", "targets", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return value if value is not None else {}

    def upgrade(self) -> Config:
        """Re-home the legacy singleton providers into v2 sequences."""
        osprey = []
        if self.targets:
            osprey.append(
                OspreyProviderConfig(
                    certificate_authority=self.certificate_authority,
                    certificate_authority_data=self.certificate_authority_data,
                    targets=self.targets,
                )
            )
        if self.providers.osprey:
            osprey.append(self.providers.osprey)
        providers = Providers(
            osprey=osprey,
            azure=[self.providers.azure] if self.providers.azure else [],
            google=[self.providers.google] if self.providers.google else [],
        )
        return Config(
            api_version=API_VERSION_V2,
            kubeconfig=self.kubeconfig,
            default_group=self.default_group,
            providers=providers,
        )


# --- Runtime values ---


class LoginCredentials(BaseModel):
    """Username and password for an Osprey server. Never persisted."""

    username: str
    password: str = Field(repr=False)
    connector: str = ""


class TargetInfo(BaseModel):
    """Everything a successful retrieve produces for one target."""

    username: str = ""
    cluster_name: str = ""
    cluster_api_server_url: str = ""
    cluster_ca: str = ""
    issuer_url: str = ""
    issuer_ca: str = ""
    client_id: str = ""
    client_secret: str = Field(default="", repr=False)
    id_token: str = Field(default="", repr=False)
    access_token: str = Field(default="", repr=False)


class UserInfo(BaseModel):
    """Identity of the user logged in to a target."""

    username: str
    roles: list[str] = Field(default_factory=list)

    def render(self) -> str:
        """``user [role1, role2]``, or just ``user`` without roles."""
        if self.roles:
            return f"{self.username} [{', '.join(self.roles)}]"
        return self.username
