"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~pkcelogin.exceptions.PkceLoginError` subclass.
Shell wrappers that source the printed token can inspect the exit code to
tell a rejected login from a network outage without parsing stderr.

Example::

    $ pkcelogin login --token-only > token.txt
    $ echo $?
    8   # EXIT_BIND_FAILURE -- the redirect port is already taken
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""Invalid arguments or client configuration (missing client id, bad URL)."""

EXIT_AUTH_FAILURE = 3
"""The provider refused the login or the token request."""

EXIT_MALFORMED_RESPONSE = 5
"""The token endpoint answered with a body that could not be understood."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_BIND_FAILURE = 8
"""The loopback redirect port could not be bound."""

EXIT_TIMEOUT = 9
"""No valid redirect arrived before the callback deadline."""

EXIT_CANCELLED = 130
"""The flow was interrupted (Ctrl-C or an explicit cancel)."""
