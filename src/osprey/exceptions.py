"""Exception hierarchy for osprey.

All exceptions inherit from :class:`OspreyError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`osprey.exit_codes`.
CLI commands catch ``OspreyError``, print it through :mod:`osprey.output`
and exit with the error's code; :func:`osprey.app.main` is the backstop for
anything that escapes a command.

Subclass hierarchy::

    OspreyError
    +-- ConfigError            invalid, missing or malformed ospreyconfig
    |   +-- CAError            CA file missing or not PEM
    +-- GroupNotFoundError     requested group absent from the config
    +-- AuthError              a provider refused to issue a token
    |   +-- UnauthenticatedError   credentials rejected (aborts a login)
    |   +-- TokenRequestError      OAuth2 error body from a token endpoint
    +-- NetworkError           DNS / connect / TLS failures
    +-- ProtocolError          malformed responses, bad state, bad JWTs
    +-- LoginTimeoutError      the login deadline was exceeded
    +-- CancelledError_        the user cancelled the login
    +-- KubeconfigError        kubeconfig read/write failures
"""

from osprey.exit_codes import EXIT_FAILURE, EXIT_INTERRUPTED


class OspreyError(Exception):
    """Base exception for all osprey errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(OspreyError):
    """Raised when the ospreyconfig file cannot be found, parsed or validated."""


class CAError(ConfigError):
    """Raised when a certificate authority file is unreadable or holds no PEM certificates."""


class GroupNotFoundError(OspreyError):
    """Raised when the resolved group is not defined in the config."""

    def __init__(self, group: str):
        super().__init__(f"Group not found: {group!r}")
        self.group = group


class AuthError(OspreyError):
    """Raised when a provider refuses to authenticate the user."""


class UnauthenticatedError(AuthError):
    """Raised when the user's credentials are rejected.

    Bad credentials for one target are bad credentials for every target,
    so the login use case stops at the first one of these.
    """


class NetworkError(OspreyError):
    """Raised on network-level failures (DNS resolution, connection refused, TLS)."""


class ProtocolError(OspreyError):
    """Raised when a server response or token cannot be understood."""


class LoginTimeoutError(OspreyError):
    """Raised when an interactive login does not complete before its deadline."""


class CancelledError_(OspreyError):
    """Raised when the user cancels a login in progress.

    Named with a trailing underscore to avoid shadowing
    :class:`asyncio.CancelledError`.
    """

    exit_code = EXIT_INTERRUPTED


class KubeconfigError(OspreyError):
    """Raised when the kubeconfig file cannot be read, parsed or written."""


class TokenRequestError(AuthError):
    """Raised when a token endpoint answers with an OAuth2 error body.

    Args:
        error_code: The ``error`` field of the response, e.g.
            ``authorization_pending``. Empty if the body had none.
        message: Human-readable description.
    """

    def __init__(self, error_code: str, message: str):
        super().__init__(message)
        self.error_code = error_code
