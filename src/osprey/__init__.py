"""osprey -- User authentication for Kubernetes clusters.

A user runs a single ``osprey user login``; the tool contacts every configured
auth backend (Osprey servers, Azure AD, Google), drives an OpenID Connect flow
per backend and writes the resulting tokens into a kubeconfig file so that
subsequent ``kubectl`` invocations authenticate transparently.

Typical workflow::

    osprey config targets          # list configured targets
    osprey user login --group dev  # authenticate against every target in "dev"
    osprey user                    # show who you are logged in as

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models for the osprey config file.
    config: Config file discovery, versioned loading and normalisation.
    snapshot: Immutable, group-indexed view of the config.
    kubeconfig: Read/merge/write of the kubeconfig file.
    oidc: OAuth2/OIDC flows (loopback callback, device code, manual paste).
    retrievers: Provider adapters (osprey, azure, google).
    orchestrator: The ``login``, ``logout`` and ``user`` use cases.
    exceptions: Exception hierarchy with exit-code mapping.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "2.8.0"
