"""Config commands -- list the groups and targets of an ospreyconfig.

Provides the ``osprey config`` sub-command group. Listings go to stdout;
``*`` marks the default group (or, for plain target listings, the members
of the default group)::

    osprey config groups --list-targets
    osprey config targets --by-groups
"""

from __future__ import annotations

from typing import Optional

import typer

from osprey.commands import fail, load_ospreyconfig
from osprey.exceptions import OspreyError
from osprey.output import print_data

config_app = typer.Typer(no_args_is_help=True)


@config_app.callback()
def config_callback(
    ctx: typer.Context,
    ospreyconfig: Optional[str] = typer.Option(
        None, "--ospreyconfig", "-o", help="Osprey targets configuration. Defaults to ~/.osprey/config."
    ),
    group: str = typer.Option("", "--group", "-g", help="Show only the specified group."),
) -> None:
    """Display configuration values for osprey."""
    ctx.ensure_object(dict)
    ctx.obj["ospreyconfig"] = ospreyconfig
    ctx.obj["group"] = group


@config_app.command("groups")
def config_groups(
    ctx: typer.Context,
    list_targets: bool = typer.Option(False, "--list-targets", "-t", help="List the targets in each group."),
    group: str = typer.Option("", "--group", "-g", help="Show only the specified group."),
) -> None:
    """List the configured groups alphabetically."""
    from osprey.orchestrator import describe_named_groups

    config = load_ospreyconfig(ctx.obj.get("ospreyconfig"))
    try:
        lines = describe_named_groups(config.snapshot(), group or ctx.obj.get("group", ""), list_targets)
    except OspreyError as exc:
        raise fail(exc) from None
    print_data("\n".join(lines))


@config_app.command("targets")
def config_targets(
    ctx: typer.Context,
    by_groups: bool = typer.Option(False, "--by-groups", "-b", help="List targets by group."),
    list_groups: bool = typer.Option(False, "--list-groups", "-l", help="List groups only."),
) -> None:
    """List the configured targets alphabetically."""
    from osprey.orchestrator import describe_targets

    config = load_ospreyconfig(ctx.obj.get("ospreyconfig"))
    try:
        lines = describe_targets(config.snapshot(), by_groups, list_groups, ctx.obj.get("group", ""))
    except OspreyError as exc:
        raise fail(exc) from None
    print_data("\n".join(lines))
