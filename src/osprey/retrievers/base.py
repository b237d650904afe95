"""Abstract base class for retrievers.

A retriever drives one provider's authentication protocol and turns a
:class:`~osprey.snapshot.Target` into the :class:`~osprey.models.TargetInfo`
that gets merged into the kubeconfig.

Every retriever authenticates at most once per instance. The first call
that needs a credential moves the retriever from ``FRESH`` to
``AUTHENTICATING``; concurrent callers block on the same lock and reuse the
cached credential once it is ``AUTHENTICATED``. :meth:`Retriever.shutdown`
moves it to ``SHUT`` and cancels any flow in progress.

To add a provider, subclass :class:`Retriever` and implement
:meth:`~Retriever.retrieve_cluster_details_and_auth_tokens` and
:meth:`~Retriever.retrieve_user_details`.

See Also:
    :mod:`osprey.retrievers.factory` for construction per provider.
"""

from __future__ import annotations

import enum
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

import httpx

from osprey.exceptions import ProtocolError
from osprey.kubeconfig import KubeconfigStore
from osprey.models import TargetInfo, UserInfo
from osprey.oidc import DEFAULT_LOGIN_TIMEOUT
from osprey.snapshot import ProviderConfig, Target

T = TypeVar("T")


class RetrieverState(str, enum.Enum):
    FRESH = "fresh"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    SHUT = "shut"


@dataclass
class RetrieverOptions:
    """Command-line options that change how retrievers log in.

    Args:
        use_device_code: Prefer the device-code flow over the loopback.
        login_timeout: Seconds to wait for an interactive login.
        disable_browser_popup: Print the login URL instead of opening a browser.
        username: Pre-filled Osprey username.
        password: Pre-filled Osprey password.
        connector: Osprey server connector to authenticate against.
        transport: httpx transport override, used by tests.
    """

    use_device_code: bool = False
    login_timeout: float = DEFAULT_LOGIN_TIMEOUT
    disable_browser_popup: bool = False
    username: str = ""
    password: str = ""
    connector: str = ""
    transport: Optional[httpx.BaseTransport] = None


class Retriever(ABC):
    """Base class for provider adapters.

    Args:
        provider: The provider's denormalised settings.
        options: Login behaviour shared by every retriever of a run.
    """

    def __init__(self, provider: ProviderConfig, options: Optional[RetrieverOptions] = None) -> None:
        self.provider = provider
        self.options = options or RetrieverOptions()
        self.state = RetrieverState.FRESH
        self.cancel = threading.Event()
        self._lock = threading.Lock()
        self._credential: Any = None

    @abstractmethod
    def retrieve_cluster_details_and_auth_tokens(self, target: Target) -> TargetInfo:
        """Authenticate if needed and return the kubeconfig material for *target*.

        Raises:
            UnauthenticatedError: If the provider rejected the credentials.
            OspreyError: For any other failure of this target.
        """
        ...

    @abstractmethod
    def retrieve_user_details(self, target: Target, auth_info: dict[str, Any]) -> UserInfo:
        """Return the identity stored in *auth_info* (a kubeconfig user mapping)."""
        ...

    def get_auth_info(self, store: KubeconfigStore, target: Target) -> Optional[dict[str, Any]]:
        """Return the stored user for *target*, or ``None`` if absent or unusable."""
        return store.get_auth_info(target.name)

    def set_use_device_code(self, value: bool) -> None:
        self.options.use_device_code = value

    def shutdown(self) -> None:
        """Cancel any login in progress and refuse further work."""
        self.cancel.set()
        with self._lock:
            self.state = RetrieverState.SHUT

    def _authenticate(self, login: Callable[[], T]) -> T:
        """Run *login* once and cache its result for later calls."""
        with self._lock:
            if self.state is RetrieverState.SHUT:
                raise ProtocolError(f"retriever for {self.provider.key} has been shut down")
            if self.state is not RetrieverState.AUTHENTICATED:
                self.state = RetrieverState.AUTHENTICATING
                try:
                    self._credential = login()
                except BaseException:
                    self.state = RetrieverState.FRESH
                    raise
                self.state = RetrieverState.AUTHENTICATED
            return self._credential
