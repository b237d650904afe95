"""OpenID Connect flows shared by the cloud retrievers.

* :mod:`osprey.oidc.client` -- :class:`OIDCClient`, the loopback callback
  and manual-paste flows, and the token endpoint.
* :mod:`osprey.oidc.device` -- the device authorization grant.
* :mod:`osprey.oidc.discovery` -- ``.well-known/openid-configuration``.
"""

from osprey.oidc.client import (
    DEFAULT_LOGIN_TIMEOUT,
    Endpoint,
    OAuth2Config,
    OAuth2Token,
    OIDCClient,
    generate_pkce_pair,
)
from osprey.oidc.discovery import get_well_known_config

__all__ = [
    "DEFAULT_LOGIN_TIMEOUT",
    "Endpoint",
    "OAuth2Config",
    "OAuth2Token",
    "OIDCClient",
    "generate_pkce_pair",
    "get_well_known_config",
]
