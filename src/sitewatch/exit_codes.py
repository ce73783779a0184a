"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~sitewatch.exceptions.SitewatchError` subclass.
Shell wrappers can inspect the exit code to tell a rejected login apart
from an unreachable identity provider without parsing stderr.

Example::

    $ sitewatch auth token
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- no stored session for the last user
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed or no usable credential is stored."""

EXIT_SITE_DOWN = 4
"""At least one monitored site was reported as down."""

EXIT_PROVIDER_ERROR = 5
"""The identity provider rejected a request or returned a malformed response."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_STORE_ERROR = 7
"""The credential store backend could not be read or written."""
