"""Interactive login: Authorization Code grant with PKCE over a loopback redirect.

:class:`LoginCoordinator` runs the whole flow in the caller's thread:

1. Generate a PKCE pair.
2. Start the loopback listener with a cancellation event owned here.
3. Build the authorization URL and open it in the system browser.
4. Wait for the authorization code up to the login deadline.
5. Redeem the code at the token endpoint.
6. Resolve the username, persist the token, and hand the session over to
   the :class:`~sitewatch.auth.session.SessionManager`.

Every step's failure is terminal for the call; nothing is retried here.
"""

from __future__ import annotations

import logging
import threading
import webbrowser
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Optional

from sitewatch.auth.callback_server import LoopbackCaptureServer
from sitewatch.auth.exchange import TokenExchangeClient
from sitewatch.auth.identity import extract_user
from sitewatch.auth.pkce import generate_pkce_pair
from sitewatch.auth.session import SessionManager
from sitewatch.exceptions import AuthTimeout, BrowserLaunchError, StoreError
from sitewatch.models import LoginResult

logger = logging.getLogger(__name__)


class LoginCoordinator:
    """Compose PKCE, loopback capture, code exchange and session hand-off.

    Args:
        exchange: Token endpoint client.
        sessions: Session owner that persists tokens and runs the refresher.
        open_browser: Opens a URL and returns ``False`` on failure.
            Defaults to :func:`webbrowser.open`.
        server_factory: Builds the loopback listener.
        login_timeout: Seconds to wait for the redirect.
        on_url: Optional hook receiving the authorization URL before the
            browser is opened (the CLI prints it for copy/paste).
    """

    def __init__(
        self,
        exchange: TokenExchangeClient,
        sessions: SessionManager,
        open_browser: Callable[[str], bool] = webbrowser.open,
        server_factory: Callable[[], LoopbackCaptureServer] = LoopbackCaptureServer,
        login_timeout: float = 300.0,
        on_url: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._exchange = exchange
        self._sessions = sessions
        self._open_browser = open_browser
        self._server_factory = server_factory
        self._login_timeout = login_timeout
        self._on_url = on_url

    def login(self, client_id: str, tenant: str) -> LoginResult:
        """Run the interactive login and start a background session.

        Args:
            client_id: Application (client) id.
            tenant: Directory id or ``common``.

        Returns:
            A :class:`~sitewatch.models.LoginResult` with the token and
            resolved username.

        Raises:
            BrowserLaunchError: If the browser could not be opened.
            AuthTimeout: If no code arrived before the deadline, or the
                redirect carried no code.
            NetworkError: If the token endpoint is unreachable.
            ProviderError: If the provider rejected the code.
        """
        pkce = generate_pkce_pair()
        cancel = threading.Event()
        server = self._server_factory()
        redirect_uri, code_future = server.start(cancel)
        try:
            url = self._exchange.authorization_url(
                client_id, tenant, redirect_uri, pkce.challenge
            )
            if self._on_url is not None:
                self._on_url(url)
            self._launch_browser(url)

            try:
                code = code_future.result(timeout=self._login_timeout)
            except FutureTimeoutError:
                raise AuthTimeout(
                    f"No authorization response within {self._login_timeout:g} seconds"
                ) from None
            if code is None:
                raise AuthTimeout("Authorization redirect did not include a code")
        finally:
            cancel.set()
            server.join()

        token = self._exchange.exchange(code, pkce.verifier, redirect_uri, client_id, tenant)
        user = extract_user(token)

        cache = self._sessions.cache
        try:
            cache.persist(user, token)
        except StoreError as exc:
            logger.warning("Signed in as %s but the token could not be stored: %s", user, exc)

        self._sessions.start_session(user)
        logger.info("Signed in as %s", user)
        return LoginResult(token=token, user=user)

    def _launch_browser(self, url: str) -> None:
        try:
            opened = self._open_browser(url)
        except webbrowser.Error as exc:
            raise BrowserLaunchError(f"Failed to open browser: {exc}") from exc
        if not opened:
            raise BrowserLaunchError("No usable browser found to open the sign-in page")
