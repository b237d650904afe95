"""User commands -- log in to, log out of, and inspect configured targets.

Provides the ``osprey user`` sub-command group. Invoked on its own it prints
the identity stored in the kubeconfig for each target of the active group::

    osprey user
    osprey user login --group dev
    osprey user login --use-device-code --login-timeout 2m
    osprey user logout

``--ospreyconfig`` and ``--group`` are accepted on ``osprey user`` and are
inherited by ``login`` and ``logout``.
"""

from __future__ import annotations

import re
from typing import Optional

import typer

from osprey.commands import fail, load_ospreyconfig
from osprey.exceptions import OspreyError
from osprey.exit_codes import EXIT_FAILURE
from osprey.oidc import DEFAULT_LOGIN_TIMEOUT
from osprey.output import error

user_app = typer.Typer(invoke_without_command=True)

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: str) -> float:
    """Parse ``90``, ``90s``, ``2m`` or ``1m30s`` into seconds."""
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        pos = 0
        seconds = 0.0
        for match in _DURATION_PART.finditer(value):
            if match.start() != pos:
                break
            seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
            pos = match.end()
        if pos != len(value) or not value:
            raise typer.BadParameter(f"invalid duration {value!r}") from None
    if seconds <= 0:
        raise typer.BadParameter(f"duration must be positive, got {value!r}")
    return seconds


def _options(ctx: typer.Context) -> dict:
    ctx.ensure_object(dict)
    return ctx.obj


@user_app.callback()
def user_callback(
    ctx: typer.Context,
    ospreyconfig: Optional[str] = typer.Option(
        None, "--ospreyconfig", "-o", help="Osprey targets configuration. Defaults to ~/.osprey/config."
    ),
    group: str = typer.Option("", "--group", "-g", help="Name of the group to use."),
) -> None:
    """Show the user logged in to each target of the active group."""
    obj = _options(ctx)
    obj["ospreyconfig"] = ospreyconfig
    obj["group"] = group
    if ctx.invoked_subcommand is not None:
        return

    from osprey.orchestrator import user

    config = load_ospreyconfig(ospreyconfig)
    try:
        result = user(config, group)
    except OspreyError as exc:
        raise fail(exc) from None
    if not result.ok:
        error("Failed to retrieve user details for some targets.")
        raise typer.Exit(code=EXIT_FAILURE)


@user_app.command("login")
def user_login(
    ctx: typer.Context,
    group: str = typer.Option("", "--group", "-g", help="Name of the group to log in to."),
    use_device_code: bool = typer.Option(
        False, "--use-device-code", help="Use the device-code flow for authorisation."
    ),
    login_timeout: str = typer.Option(
        f"{int(DEFAULT_LOGIN_TIMEOUT)}s",
        "--login-timeout",
        help="How long to wait for a callback or device-code login, e.g. 90s or 2m.",
    ),
    connector: str = typer.Option("", "--connector", help="Osprey server connector to authenticate against."),
    disable_browser_popup: bool = typer.Option(
        False, "--disable-browser-popup", help="Print the login URL instead of opening a browser."
    ),
    username: str = typer.Option("", "--username", "-u", help="Username for the osprey server."),
    password: str = typer.Option("", "--password", "-p", help="Password for the osprey server."),
) -> None:
    """Log in to one or more Kubernetes clusters.

    Authenticates against the providers of every target in the group and
    writes a cluster, a user and a context per target (plus one context per
    alias) into the kubeconfig.

    Example::

        osprey user login
        osprey user login --group prod --connector ldap
    """
    from osprey.orchestrator import login
    from osprey.retrievers import RetrieverOptions

    obj = _options(ctx)
    timeout = parse_duration(login_timeout)
    config = load_ospreyconfig(obj.get("ospreyconfig"))
    options = RetrieverOptions(
        use_device_code=use_device_code,
        login_timeout=timeout,
        disable_browser_popup=disable_browser_popup,
        username=username,
        password=password,
        connector=connector,
    )
    try:
        result = login(config, group or obj.get("group", ""), options)
    except OspreyError as exc:
        raise fail(exc) from None
    if not result.ok:
        error("Failed to update credentials for some targets.")
        raise typer.Exit(code=EXIT_FAILURE)


@user_app.command("logout")
def user_logout(ctx: typer.Context) -> None:
    """Log out of every configured target.

    Clears the stored tokens but keeps the clusters, users and contexts so
    that the next login only refreshes them.
    """
    from osprey.orchestrator import logout

    config = load_ospreyconfig(_options(ctx).get("ospreyconfig"))
    try:
        result = logout(config)
    except OspreyError as exc:
        raise fail(exc) from None
    if not result.ok:
        error("Failed to update credentials for some targets.")
        raise typer.Exit(code=EXIT_FAILURE)
