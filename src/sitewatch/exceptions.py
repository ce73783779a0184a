"""Exception hierarchy for sitewatch.

All exceptions inherit from :class:`SitewatchError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`sitewatch.exit_codes`.
The top-level error handler in :func:`sitewatch.app.main` catches
``SitewatchError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    SitewatchError (exit 1)
    +-- AuthError               (exit 3)
    |   +-- AuthTimeout
    |   +-- BrowserLaunchError
    |   +-- NoStoredToken
    |   +-- MissingRefreshToken
    +-- ProviderError           (exit 5)
    +-- NetworkError            (exit 6)
    +-- StoreError              (exit 7)
    +-- ConfigError             (exit 1)
"""

from __future__ import annotations

from typing import Optional

from sitewatch.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_PROVIDER_ERROR,
    EXIT_STORE_ERROR,
)


class SitewatchError(Exception):
    """Base exception for all sitewatch errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`sitewatch.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class AuthError(SitewatchError):
    """Base class for login and session failures."""

    exit_code = EXIT_AUTH_FAILURE


class AuthTimeout(AuthError):
    """Raised when no authorization code arrives before the login deadline.

    Also raised when the loopback listener received a request that did not
    carry a ``code`` parameter (the user denied consent, or a stray request
    reached the port first).
    """


class BrowserLaunchError(AuthError):
    """Raised when the system browser could not be opened."""


class NoStoredToken(AuthError):
    """Raised when no credential is stored for the requested user."""

    def __init__(self, user: str):
        super().__init__(f"No stored credentials for '{user}'. Run: sitewatch auth login")
        self.user = user


class MissingRefreshToken(AuthError):
    """Raised when a stored token is due for refresh but has no refresh token."""

    def __init__(self, user: str):
        super().__init__(
            f"Session for '{user}' expired and cannot be refreshed. Run: sitewatch auth login"
        )
        self.user = user


class ProviderError(SitewatchError):
    """Raised when the token endpoint answers with an error or an unusable body.

    Attributes:
        status_code: HTTP status of the provider response, if one was received.
        error: The OAuth2 ``error`` code from the response body, if present.
        description: The OAuth2 ``error_description``, if present.
    """

    exit_code = EXIT_PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error: Optional[str] = None,
        description: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.description = description


class NetworkError(SitewatchError):
    """Raised on transport failures (timeout, DNS resolution, connection refused)."""

    exit_code = EXIT_CONNECTION_ERROR


class StoreError(SitewatchError):
    """Raised when the credential store backend fails to read, write, or delete."""

    exit_code = EXIT_STORE_ERROR


class ConfigError(SitewatchError):
    """Raised for configuration problems (invalid JSON, missing client id, bad store name)."""

    exit_code = EXIT_GENERIC_FAILURE
