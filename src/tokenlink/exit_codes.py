"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~tokenlink.exceptions.TokenlinkError` subclass.
Shell wrappers can inspect the exit code to tell a denied authorization
apart from a certificate problem without parsing stderr.

Example::

    $ tokenlink login slack
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- the provider denied the request
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or an unknown service."""

EXIT_AUTH_FAILURE = 3
"""The authorization round-trip or the token exchange failed."""

EXIT_CERTIFICATE_ERROR = 7
"""The local certificate authority could not be created, loaded, or installed."""

EXIT_STORE_UNAVAILABLE = 8
"""The secret store could not be read or written."""
