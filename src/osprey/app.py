"""Typer application and CLI entry point for osprey.

This module wires together the top-level Typer application and registers
the built-in sub-commands (``user`` and ``config``).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs a SIGINT handler, invokes the Typer app and
maps every failure onto exit code 1 (130 when interrupted).

See Also:
    :mod:`osprey.orchestrator`: The use-cases behind each command.
    :mod:`osprey.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import signal
import sys
from typing import Any

import click
import typer

from osprey import __version__
from osprey.commands.config import config_app
from osprey.commands.user import user_app
from osprey.exit_codes import EXIT_FAILURE, EXIT_INTERRUPTED, EXIT_INVALID_USAGE, EXIT_SUCCESS

app = typer.Typer(
    name="osprey",
    help="User authentication for Kubernetes clusters.",
    no_args_is_help=True,
    add_completion=False,
)

app.add_typer(user_app, name="user", help="User commands for osprey.")
app.add_typer(config_app, name="config", help="Commands to display configuration values for osprey.")


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"osprey version {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug output."),
) -> None:
    """Root callback executed before every sub-command.

    Installs the global :class:`~osprey.output.OutputManager`, with debug
    lines enabled when ``--debug`` is given.
    """
    from osprey.output import OutputManager, set_output

    set_output(OutputManager(verbose=debug))


def _setup_signal_handlers() -> None:
    """Turn SIGINT into KeyboardInterrupt so ``finally`` blocks still run."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        raise KeyboardInterrupt

    signal.signal(signal.SIGINT, _handler)


def main() -> None:
    """CLI entry point invoked by the ``osprey`` console script.

    Click usage errors exit with 1 rather than click's usual 2.
    :class:`~osprey.exceptions.OspreyError` instances that escape a command
    exit with the error's ``exit_code``.

    Raises:
        SystemExit: Always raised.
    """
    from osprey.exceptions import OspreyError
    from osprey.output import error

    _setup_signal_handlers()
    try:
        rv = app(standalone_mode=False)
    except click.exceptions.UsageError as exc:
        exc.show()
        sys.exit(EXIT_INVALID_USAGE)
    except click.exceptions.Abort:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_INTERRUPTED)
    except click.ClickException as exc:
        exc.show()
        sys.exit(EXIT_FAILURE)
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_INTERRUPTED)
    except OspreyError as exc:
        error(str(exc))
        sys.exit(exc.exit_code)
    sys.exit(rv if isinstance(rv, int) else EXIT_SUCCESS)
