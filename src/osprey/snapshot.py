"""Immutable, index-friendly view of a loaded config.

A :class:`ConfigSnapshot` organises targets by group and by provider so
that the login, logout and listing use-cases never walk the raw config.
It does not reflect changes made to the config after it was taken.

Ordering is part of the contract: groups and targets are returned
alphabetically, providers in declaration order (kinds osprey, azure,
google), and aliases sorted on access.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from osprey.models import (
    AzureProviderConfig,
    Config,
    GoogleProviderConfig,
    ProviderEntry,
    TargetEntry,
)

UNGROUPED = ""


@dataclass(frozen=True)
class ProviderConfig:
    """Denormalised provider settings handed to a retriever.

    Keyed by ``<kind>:<name>``, e.g. ``osprey:provider-0``.
    """

    kind: str
    name: str
    certificate_authority_data: str = ""
    server_application_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = ""
    scopes: tuple[str, ...] = ()
    tenant_id: str = ""
    issuer_url: str = ""

    @property
    def key(self) -> str:
        return provider_key(self.kind, self.name)


def provider_key(kind: str, name: str) -> str:
    return f"{kind}:{name}"


@dataclass(frozen=True)
class Target:
    """A target name, its entry, and the key of the provider that owns it."""

    name: str
    entry: TargetEntry
    provider: str

    @property
    def aliases(self) -> list[str]:
        return sorted(self.entry.aliases)

    @property
    def has_aliases(self) -> bool:
        return bool(self.entry.aliases)

    @property
    def server(self) -> str:
        return self.entry.server

    @property
    def api_server(self) -> str:
        return self.entry.api_server

    @property
    def certificate_authority_data(self) -> str:
        return self.entry.certificate_authority_data

    @property
    def provider_kind(self) -> str:
        return self.provider.split(":", 1)[0]

    def names(self) -> list[str]:
        """The canonical name followed by the sorted aliases."""
        return [self.name, *self.aliases]


@dataclass(frozen=True)
class Group:
    """A named bundle of targets. The ``""`` group holds ungrouped targets."""

    name: str
    is_default: bool = False
    by_provider: dict[str, tuple[Target, ...]] = field(default_factory=dict)

    def targets(self) -> list[Target]:
        """All targets in the group, alphabetically."""
        return _sort_targets(t for targets in self.by_provider.values() for t in targets)

    def targets_by_provider(self) -> list[tuple[str, list[Target]]]:
        """``(provider key, targets)`` pairs in provider declaration order."""
        return [(key, _sort_targets(targets)) for key, targets in self.by_provider.items()]

    def contains(self, target: Target) -> bool:
        return any(t.name == target.name for t in self.targets())


def _sort_targets(targets) -> list[Target]:
    return sorted(targets, key=lambda t: t.name)


@dataclass(frozen=True)
class ConfigSnapshot:
    default_group_name: str
    groups_by_name: dict[str, Group]
    provider_config_by_name: dict[str, ProviderConfig]

    def groups(self) -> list[Group]:
        """Named groups, alphabetically. The ungrouped group is excluded."""
        return sorted(
            (g for g in self.groups_by_name.values() if g.name != UNGROUPED),
            key=lambda g: g.name,
        )

    def have_groups(self) -> bool:
        return any(name != UNGROUPED for name in self.groups_by_name)

    def get_group(self, name: str) -> Optional[Group]:
        return self.groups_by_name.get(name)

    def default_group(self) -> Optional[Group]:
        """The default group, or the ungrouped one when none is configured."""
        return self.get_group(self.default_group_name)

    def targets(self) -> list[Target]:
        """Every distinct target in the config, alphabetically."""
        unique: dict[str, Target] = {}
        for group in self.groups_by_name.values():
            for target in group.targets():
                unique.setdefault(target.name, target)
        return _sort_targets(unique.values())

    def provider_configs(self) -> list[ProviderConfig]:
        return list(self.provider_config_by_name.values())

    def provider_config(self, key: str) -> ProviderConfig:
        return self.provider_config_by_name[key]


def _provider_config(kind: str, entry: ProviderEntry) -> ProviderConfig:
    kwargs = {}
    if isinstance(entry, (AzureProviderConfig, GoogleProviderConfig)):
        kwargs.update(
            client_id=entry.client_id,
            client_secret=entry.client_secret,
            redirect_uri=entry.redirect_uri,
            scopes=tuple(entry.scopes),
            issuer_url=entry.issuer_url,
        )
    if isinstance(entry, AzureProviderConfig):
        kwargs.update(
            server_application_id=entry.server_application_id,
            tenant_id=entry.tenant_id,
        )
    return ProviderConfig(
        kind=kind,
        name=entry.name,
        certificate_authority_data=entry.certificate_authority_data,
        **kwargs,
    )


def build_snapshot(config: Config) -> ConfigSnapshot:
    """Project *config* into a :class:`ConfigSnapshot`."""
    provider_configs: dict[str, ProviderConfig] = {}
    members: dict[str, dict[str, list[Target]]] = {}

    for kind, entries in config.providers.by_kind():
        for entry in entries:
            provider = _provider_config(kind, entry)
            provider_configs[provider.key] = provider
            for name, target_entry in entry.targets.items():
                target = Target(
                    name=name,
                    entry=target_entry.model_copy(deep=True),
                    provider=provider.key,
                )
                for group_name in target_entry.groups or [UNGROUPED]:
                    by_provider = members.setdefault(group_name, {})
                    by_provider.setdefault(provider.key, []).append(target)

    groups_by_name = {
        name: Group(
            name=name,
            is_default=name == config.default_group,
            by_provider={key: tuple(targets) for key, targets in by_provider.items()},
        )
        for name, by_provider in members.items()
    }
    return ConfigSnapshot(
        default_group_name=config.default_group,
        groups_by_name=groups_by_name,
        provider_config_by_name=provider_configs,
    )
