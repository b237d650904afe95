"""Provider adapters that turn targets into kubeconfig material.

* :class:`OspreyRetriever` -- username/password against Osprey servers.
* :class:`AzureRetriever` -- Azure AD OIDC, cluster details from the API
  server or ``/cluster-info``.
* :class:`GoogleRetriever` -- Google OIDC, cluster details from GKE.
"""

from osprey.retrievers.azure import AzureRetriever
from osprey.retrievers.base import Retriever, RetrieverOptions, RetrieverState
from osprey.retrievers.factory import create_retriever, create_retrievers
from osprey.retrievers.google import GoogleRetriever
from osprey.retrievers.osprey import OspreyRetriever

__all__ = [
    "AzureRetriever",
    "GoogleRetriever",
    "OspreyRetriever",
    "Retriever",
    "RetrieverOptions",
    "RetrieverState",
    "create_retriever",
    "create_retrievers",
]
