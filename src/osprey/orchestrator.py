"""Top-level use-cases behind the ``osprey`` commands.

Each function takes a loaded :class:`~osprey.models.Config` and a
:class:`~osprey.kubeconfig.KubeconfigStore` and does the work of one command:

* :func:`login` -- authenticate against every target of a group and merge
  the results into the kubeconfig.
* :func:`logout` -- clear the stored tokens of every configured target.
* :func:`user` -- print the identity stored for each target of a group.
* :func:`describe_groups` / :func:`describe_targets` -- render the
  ``osprey config`` listings.

Targets are visited one at a time: providers in declaration order, targets
alphabetically within each provider. A rejected credential aborts the whole
login; any other per-target failure is reported and the next target is tried.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from osprey.config import kubeconfig_path
from osprey.exceptions import ConfigError, GroupNotFoundError, OspreyError, UnauthenticatedError
from osprey.kubeconfig import KubeconfigStore
from osprey.models import Config
from osprey.output import debug, error, info, print_data, success
from osprey.retrievers import Retriever, RetrieverOptions, create_retrievers
from osprey.snapshot import UNGROUPED, ConfigSnapshot, Group, Target

UNGROUPED_LABEL = "<ungrouped>"


@dataclass
class LoginResult:
    """Outcome of a :func:`login` run."""

    group: str
    logged_in: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class RunResult:
    """Outcome of a :func:`logout` or :func:`user` run."""

    processed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


def resolve_group(config: Config, snapshot: ConfigSnapshot, group_flag: str = "") -> Group:
    """Return the group selected by *group_flag*, the default group, or the ungrouped one.

    Raises:
        GroupNotFoundError: If the resolved group has no targets.
    """
    name = config.group_or_default(group_flag or "")
    group = snapshot.get_group(name)
    if group is None:
        raise GroupNotFoundError(name)
    return group


def _alias_suffix(target: Target) -> str:
    if not target.has_aliases:
        return ""
    return " | " + " | ".join(target.aliases)


def _display_active_group(group_flag: str, default_group: str) -> None:
    if group_flag:
        info(f"Active group: {group_flag}")
    elif default_group:
        info(f"Active group (default): {default_group}")


def login(
    config: Config,
    group_flag: str = "",
    options: Optional[RetrieverOptions] = None,
    store: Optional[KubeconfigStore] = None,
) -> LoginResult:
    """Log in to every target of the selected group.

    Args:
        config: The loaded ospreyconfig.
        group_flag: Value of ``--group``; empty to use the default group.
        options: Login options passed to each retriever.
        store: Kubeconfig to update. Defaults to the config's ``kubeconfig``.

    Returns:
        A :class:`LoginResult` listing the targets that succeeded and failed.

    Raises:
        GroupNotFoundError: If the selected group does not exist.
        UnauthenticatedError: If a provider rejected the credentials.
        KubeconfigError: If the kubeconfig cannot be parsed.
    """
    snapshot = config.snapshot()
    group = resolve_group(config, snapshot, group_flag)
    if store is None:
        store = KubeconfigStore(kubeconfig_path(config))
    store.load()

    _display_active_group(group_flag, config.default_group)
    result = LoginResult(group=group.name)

    by_provider = group.targets_by_provider()
    retrievers: dict[str, Retriever] = create_retrievers(snapshot, options, [key for key, _ in by_provider])
    try:
        for provider_key, targets in by_provider:
            retriever = retrievers[provider_key]
            for target in targets:
                debug(f"Logging in to {target.name} via {provider_key}")
                try:
                    target_info = retriever.retrieve_cluster_details_and_auth_tokens(target)
                    store.update(target.name, target.aliases, target_info)
                except UnauthenticatedError:
                    raise
                except OspreyError as exc:
                    error(f"Failed to log in to {target.name}: {exc}")
                    result.failed[target.name] = str(exc)
                    continue
                result.logged_in.append(target.name)
                success(f"Logged in to: {target.name}{_alias_suffix(target)}")
    finally:
        for retriever in retrievers.values():
            retriever.shutdown()
    return result


def logout(config: Config, store: Optional[KubeconfigStore] = None) -> RunResult:
    """Clear the stored token of every target in *config*, whatever its group.

    Raises:
        KubeconfigError: If the kubeconfig cannot be parsed.
    """
    if store is None:
        store = KubeconfigStore(kubeconfig_path(config))
    store.load()

    result = RunResult()
    for target in config.snapshot().targets():
        try:
            store.remove(target.name)
        except OspreyError as exc:
            error(f"Failed to remove {target.name} from kubeconfig: {exc}")
            result.failed[target.name] = str(exc)
            continue
        result.processed.append(target.name)
        info(f"Logged out from {target.name}")
    return result


def user(
    config: Config,
    group_flag: str = "",
    store: Optional[KubeconfigStore] = None,
    options: Optional[RetrieverOptions] = None,
) -> RunResult:
    """Print ``<target>: <identity>`` for each target of the selected group.

    Targets without stored credentials print ``<target>: none``.

    Raises:
        GroupNotFoundError: If the selected group does not exist.
        KubeconfigError: If the kubeconfig cannot be parsed.
    """
    snapshot = config.snapshot()
    group = resolve_group(config, snapshot, group_flag)
    if store is None:
        store = KubeconfigStore(kubeconfig_path(config))
    store.load()

    by_provider = group.targets_by_provider()
    retrievers = create_retrievers(snapshot, options, [key for key, _ in by_provider])
    result = RunResult()
    try:
        for provider_key, targets in by_provider:
            retriever = retrievers[provider_key]
            for target in targets:
                try:
                    auth_info = retriever.get_auth_info(store, target)
                    identity = "none"
                    if auth_info is not None:
                        identity = retriever.retrieve_user_details(target, auth_info).render()
                except OspreyError as exc:
                    error(f"Failed to retrieve user for {target.name} from kubeconfig: {exc}")
                    result.failed[target.name] = str(exc)
                    continue
                result.processed.append(target.name)
                print_data(f"{target.name}: {identity}")
    finally:
        for retriever in retrievers.values():
            retriever.shutdown()
    return result


def _describe_group(group: Group, list_targets: bool) -> list[str]:
    highlight = "*" if group.is_default else " "
    lines = [f"{highlight} {group.name or UNGROUPED_LABEL}"]
    if list_targets:
        for target in group.targets():
            lines.append(f"    {target.name}{_alias_suffix(target)}")
    return lines


def describe_groups(snapshot: ConfigSnapshot, group_name: str = "", list_targets: bool = False) -> list[str]:
    """Render the groups of *snapshot*, one line each, optionally with targets.

    With *group_name* only that group is shown. Otherwise the ungrouped
    targets (if any) come first, followed by the named groups alphabetically.

    Raises:
        GroupNotFoundError: If *group_name* is not a group of *snapshot*.
    """
    if group_name:
        group = snapshot.get_group(group_name)
        if group is None:
            raise GroupNotFoundError(group_name)
        return _describe_group(group, list_targets)

    lines: list[str] = []
    ungrouped = snapshot.get_group(UNGROUPED)
    if ungrouped is not None:
        lines.extend(_describe_group(ungrouped, list_targets))
    for group in snapshot.groups():
        lines.extend(_describe_group(group, list_targets))
    return lines


def describe_named_groups(snapshot: ConfigSnapshot, group_name: str = "", list_targets: bool = False) -> list[str]:
    """Render the ``osprey config groups`` listing.

    Raises:
        ConfigError: If the config defines no groups.
        GroupNotFoundError: If *group_name* is not a group of *snapshot*.
    """
    if not snapshot.have_groups():
        raise ConfigError("There are no groups defined")
    if group_name:
        return ["Osprey groups:", *describe_groups(snapshot, group_name, list_targets)]
    lines = ["Osprey groups:"]
    for group in snapshot.groups():
        lines.extend(_describe_group(group, list_targets))
    return lines


def describe_targets(
    snapshot: ConfigSnapshot,
    by_groups: bool = False,
    list_groups: bool = False,
    group_name: str = "",
) -> list[str]:
    """Render the ``osprey config targets`` listing.

    Without flags every distinct target is listed alphabetically, with ``*``
    marking members of the default group.
    """
    if list_groups:
        return ["Configured groups:", *describe_groups(snapshot, group_name, list_targets=False)]
    if by_groups:
        return ["Configured targets:", *describe_groups(snapshot, group_name, list_targets=True)]

    default_group = snapshot.default_group()
    lines = ["Configured targets:"]
    for target in snapshot.targets():
        highlight = "*" if default_group is not None and default_group.contains(target) else " "
        lines.append(f"{highlight} {target.name}{_alias_suffix(target)}")
    return lines
