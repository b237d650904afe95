"""Built-in CLI sub-commands for osprey.

* :mod:`~osprey.commands.user` -- ``osprey user`` plus ``login`` and
  ``logout``.
* :mod:`~osprey.commands.config` -- ``osprey config groups`` and
  ``osprey config targets`` listings.

Each module exports a :class:`typer.Typer` sub-application registered on
the root app in :mod:`osprey.app`. Commands print :class:`OspreyError`
messages through :mod:`osprey.output` and exit with the error's code.
"""

from __future__ import annotations

from typing import Optional

import typer

from osprey.exceptions import OspreyError
from osprey.models import Config
from osprey.output import error


def load_ospreyconfig(path: Optional[str]) -> Config:
    """Resolve and load the ospreyconfig, exiting on failure."""
    from osprey.config import load_config, resolve_config_path

    try:
        return load_config(resolve_config_path(path))
    except OspreyError as exc:
        error(f"Failed to load ospreyconfig file: {exc}")
        raise typer.Exit(code=exc.exit_code) from None


def fail(exc: OspreyError) -> typer.Exit:
    """Print *exc* and return the :class:`typer.Exit` to raise for it."""
    error(str(exc))
    return typer.Exit(code=exc.exit_code)
