"""Retriever construction, one per provider touched by a run."""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Optional

from osprey.exceptions import ConfigError
from osprey.models import AZURE_PROVIDER, GOOGLE_PROVIDER, OSPREY_PROVIDER
from osprey.retrievers.azure import AzureRetriever
from osprey.retrievers.base import Retriever, RetrieverOptions
from osprey.retrievers.google import GoogleRetriever
from osprey.retrievers.osprey import OspreyRetriever
from osprey.snapshot import ConfigSnapshot, ProviderConfig

RETRIEVER_TYPES: dict[str, type[Retriever]] = {
    OSPREY_PROVIDER: OspreyRetriever,
    AZURE_PROVIDER: AzureRetriever,
    GOOGLE_PROVIDER: GoogleRetriever,
}


def create_retriever(provider: ProviderConfig, options: Optional[RetrieverOptions] = None) -> Retriever:
    """Build the retriever for *provider* with its own copy of *options*.

    Raises:
        ConfigError: If the provider kind is unknown.
    """
    retriever_cls = RETRIEVER_TYPES.get(provider.kind)
    if retriever_cls is None:
        raise ConfigError(f"unsupported provider: {provider.kind}")
    if options is not None:
        options = replace(options)
    return retriever_cls(provider, options)


def create_retrievers(
    snapshot: ConfigSnapshot,
    options: Optional[RetrieverOptions] = None,
    provider_names: Optional[Iterable[str]] = None,
) -> dict[str, Retriever]:
    """Build one retriever per provider key.

    Args:
        snapshot: The config snapshot.
        options: Login options; each retriever gets its own copy.
        provider_names: Provider keys to build. Defaults to every provider.
    """
    keys = list(provider_names) if provider_names is not None else list(snapshot.provider_config_by_name)
    return {key: create_retriever(snapshot.provider_config(key), options) for key in keys}
