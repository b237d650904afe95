"""Prompting for Osprey server credentials.

The password is read without echo when stdin is a terminal and as a plain
line otherwise, so that credentials can be piped in from scripts.
"""

from __future__ import annotations

import getpass
import sys

from osprey.exceptions import AuthError
from osprey.models import LoginCredentials


def _read_line(name: str, prompt: str) -> str:
    sys.stderr.write(prompt)
    sys.stderr.flush()
    line = sys.stdin.readline()
    if not line:
        raise AuthError(f"failed to read {name}: no input")
    return line.strip()


def _read_hidden(name: str, prompt: str) -> str:
    try:
        return getpass.getpass(prompt).strip()
    except EOFError as exc:
        raise AuthError(f"failed to read {name}: no input") from exc


def get_credentials(username: str = "", password: str = "", connector: str = "") -> LoginCredentials:
    """Return login credentials, prompting for whatever was not supplied.

    Args:
        username: Username given on the command line, if any.
        password: Password given on the command line, if any.
        connector: Connector forwarded to the Osprey server.
    """
    if not username:
        username = _read_line("username", "Username: ")
    if not password:
        if sys.stdin.isatty():
            password = _read_hidden("password", "Password: ")
        else:
            password = _read_line("password", "Password: ")
    return LoginCredentials(username=username, password=password, connector=connector)
