"""Loading, validation and persistence of the ospreyconfig file.

This module handles everything between the YAML on disk and a validated
:class:`~osprey.models.Config`:

* **Path resolution** -- :func:`resolve_config_path` honours an explicit
  ``--ospreyconfig`` and otherwise searches ``~/.config/osprey/config`` then
  ``~/.osprey/config``.
* **Version detection** -- :func:`load_config` reads only ``apiVersion``
  first; ``v2`` files are parsed directly, anything else goes through the
  legacy parser and is upgraded in memory.
* **Validation** -- per provider kind (required fields, at least one target)
  plus the default-group shadowing rule.
* **CA normalisation** -- certificate paths are loaded into base64 PEM data,
  inline data wins over paths, and targets without CA material inherit their
  provider's.

Writes use an atomic temp-file-then-rename strategy (:func:`atomic_write`),
shared with :mod:`osprey.kubeconfig`.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from osprey.exceptions import ConfigError
from osprey.models import (
    API_VERSION_V2,
    ApiVersionProbe,
    AzureProviderConfig,
    Config,
    GoogleProviderConfig,
    LegacyConfig,
    OspreyProviderConfig,
    ProviderEntry,
    TargetEntry,
)
from osprey.output import debug
from osprey.web import load_tls_cert

_APP_NAME = "osprey"
_CONFIG_FILENAME = "config"


# --- Path resolution ---


def default_config_paths() -> list[Path]:
    """Return the config search list, most preferred first."""
    home = Path.home()
    return [
        home / ".config" / _APP_NAME / _CONFIG_FILENAME,
        home / f".{_APP_NAME}" / _CONFIG_FILENAME,
    ]


def resolve_config_path(explicit: Optional[str | Path] = None) -> Path:
    """Return the ospreyconfig path to load.

    Args:
        explicit: Path given on the command line. Used as-is when set.

    Raises:
        ConfigError: If no explicit path is given and none of the default
            locations exist.
    """
    if explicit:
        return Path(explicit).expanduser()
    candidates = default_config_paths()
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    searched = ", ".join(str(c) for c in candidates)
    raise ConfigError(f"osprey config file not found, searched: {searched}")


def default_kubeconfig_path() -> Path:
    """Return ``~/.kube/config``."""
    return Path.home() / ".kube" / "config"


def kubeconfig_path(config: Config) -> Path:
    """Return the kubeconfig path configured in *config*, or the default."""
    if config.kubeconfig:
        return Path(config.kubeconfig).expanduser()
    return default_kubeconfig_path()


# --- Atomic file writes ---


def atomic_write(path: Path, data: str) -> None:
    """Replace *path* with *data* in a single rename.

    The temporary file lives next to *path* so that ``os.replace`` never
    crosses a filesystem boundary. It is removed if anything fails before
    the rename.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    handle = None
    tmp_path: Optional[str] = None
    try:
        handle = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = handle.name
        handle.write(data)
        handle.flush()
        os.fsync(handle.fileno())
        handle.close()
        handle = None
        os.replace(tmp_path, path)
    except BaseException:
        if handle is not None:
            handle.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Loading ---


def load_config(path: str | Path) -> Config:
    """Load, validate and normalise the ospreyconfig at *path*.

    Returns:
        A v2 :class:`~osprey.models.Config`, whatever version was on disk.

    Raises:
        ConfigError: If the file is missing, is not valid YAML, or fails
            validation.
        CAError: If a referenced CA file is unreadable or not PEM.
    """
    path = Path(path).expanduser()
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"osprey config file not found: {path}") from exc
    except OSError as exc:
        raise ConfigError(f"failed to read config file {path}: {exc}") from exc

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to unmarshal config file {path}: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"failed to unmarshal config file {path}: expected a mapping")

    config = parse_config(data, source=str(path))
    try:
        validate_config(config)
    except ConfigError as exc:
        raise ConfigError(f"invalid config {path}: {exc}") from exc
    normalise_certificates(config)
    return config


def parse_config(data: dict[str, Any], source: str = "<config>") -> Config:
    """Turn raw YAML data into a v2 :class:`Config`, upgrading legacy files."""
    try:
        probe = ApiVersionProbe.model_validate(data)
        if probe.api_version == API_VERSION_V2:
            config = Config.model_validate(data)
        else:
            debug(f"{source}: no apiVersion {API_VERSION_V2!r}, using the legacy config format")
            config = LegacyConfig.model_validate(data).upgrade()
    except ValidationError as exc:
        raise ConfigError(f"failed to unmarshal config file {source}: {exc}") from exc
    _assign_provider_names(config)
    return config


def _assign_provider_names(config: Config) -> None:
    for _, entries in config.providers.by_kind():
        for index, entry in enumerate(entries):
            if not entry.name:
                entry.name = f"provider-{index}"


# --- Validation ---


def validate_config(config: Config) -> None:
    """Check provider requirements and the default-group rule.

    Raises:
        ConfigError: On the first violation found.
    """
    if not config.all_targets():
        raise ConfigError("at least one provider target should be present")

    for kind, entries in config.providers.by_kind():
        seen: set[str] = set()
        for entry in entries:
            if entry.name in seen:
                raise ConfigError(f"duplicate {kind} provider name {entry.name!r}")
            seen.add(entry.name)

    for entry in config.providers.osprey:
        _validate_osprey(entry)
    for entry in config.providers.azure:
        _validate_azure(entry)
    for entry in config.providers.google:
        _validate_google(entry)

    ungrouped = [name for name, target in config.all_targets() if not target.groups]
    if config.default_group and ungrouped:
        raise ConfigError(
            f"default group {config.default_group!r} shadows ungrouped targets"
        )


def _validate_osprey(entry: OspreyProviderConfig) -> None:
    if not entry.targets:
        raise ConfigError("at least one target server should be present for osprey")
    for name, target in entry.targets.items():
        if not target.server:
            raise ConfigError(f"{name}'s server is required for osprey targets")


def _validate_azure(entry: AzureProviderConfig) -> None:
    if not entry.targets:
        raise ConfigError("at least one target server should be present for azure")
    if not entry.tenant_id:
        raise ConfigError("tenant-id is required for azure targets")
    if not entry.server_application_id:
        raise ConfigError("server-application-id is required for azure targets")
    if not entry.client_id or not entry.client_secret:
        raise ConfigError("oauth2 client-id and client-secret must be supplied for azure targets")
    if not entry.redirect_uri:
        raise ConfigError("oauth2 redirect-uri is required for azure targets")
    for name, target in entry.targets.items():
        if target.use_gke_clientconfig and not target.api_server:
            raise ConfigError(f"{name}: use-gke-clientconfig:true requires api-server to be set")


def _validate_google(entry: GoogleProviderConfig) -> None:
    if not entry.targets:
        raise ConfigError("at least one target server should be present for google")
    if not entry.client_id or not entry.client_secret:
        raise ConfigError("oauth2 client-id and client-secret must be supplied for google targets")
    if not entry.redirect_uri:
        raise ConfigError("oauth2 redirect-uri is required for google targets")
    for name, target in entry.targets.items():
        missing = [
            key
            for key, value in (
                ("project-id", target.project_id),
                ("location", target.location),
                ("cluster-id", target.cluster_id),
            )
            if not value
        ]
        if missing:
            raise ConfigError(f"{name}: {', '.join(missing)} required for google targets")


# --- CA normalisation ---


def normalise_certificates(config: Config) -> None:
    """Apply the CA rules to every provider and target in place.

    1. Targets without CA material inherit their provider's.
    2. A CA path is loaded and replaced with base64 PEM data.
    3. When data is present the path is cleared.

    Raises:
        CAError: If a CA file is unreadable or holds no PEM certificates.
    """
    for _, entries in config.providers.by_kind():
        for entry in entries:
            _normalise_provider(entry)


def _normalise_provider(entry: ProviderEntry) -> None:
    _normalise_pair(entry)
    for target in entry.targets.values():
        if not target.certificate_authority and not target.certificate_authority_data:
            target.certificate_authority_data = entry.certificate_authority_data
        _normalise_pair(target)


def _normalise_pair(item: ProviderEntry | TargetEntry) -> None:
    if item.certificate_authority_data:
        item.certificate_authority = ""
    elif item.certificate_authority:
        item.certificate_authority_data = load_tls_cert(item.certificate_authority)
        item.certificate_authority = ""


# --- Saving ---


def dump_config(config: Config) -> str:
    """Serialise *config* to v2 YAML."""
    data = config.model_dump(mode="json", by_alias=True, exclude_defaults=True)
    data.pop("apiVersion", None)
    data = {"apiVersion": API_VERSION_V2, **data}
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


def save_config(config: Config, path: str | Path) -> None:
    """Write *config* to *path* atomically as v2 YAML."""
    atomic_write(Path(path).expanduser(), dump_config(config))
