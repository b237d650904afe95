"""Numeric process exit codes.

Osprey keeps the contract deliberately small: scripts wrapping
``osprey user login`` only need to know whether every target was
logged in to.

Example::

    $ osprey user login --group=non_existent
    $ echo $?
    1   # EXIT_FAILURE -- the group does not exist
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_FAILURE = 1
"""At least one target failed, or the configuration could not be used."""

EXIT_INVALID_USAGE = 1
"""The command was invoked with invalid arguments."""

EXIT_INTERRUPTED = 130
"""The user pressed Ctrl-C."""
