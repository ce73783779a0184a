"""Process-wide session ownership: at most one active refresh scheduler.

:class:`SessionManager` replaces global mutable session state. It is
created once per process (by the CLI or an embedding application) and passed
explicitly to the login coordinator and to anything that logs out.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from sitewatch.auth.scheduler import RefreshScheduler
from sitewatch.auth.tokens import TokenCache
from sitewatch.models import WhoAmI

logger = logging.getLogger(__name__)


class SessionManager:
    """Own the active session's refresh scheduler.

    Args:
        cache: Expiry policy shared with API callers.
        scheduler_factory: Builds a scheduler for ``(cache, user)``; tests
            pass a factory with short delays.
        join_timeout: Upper bound when waiting for a cancelled scheduler.
    """

    def __init__(
        self,
        cache: TokenCache,
        scheduler_factory: Callable[[TokenCache, str], RefreshScheduler] = RefreshScheduler,
        join_timeout: Optional[float] = 5.0,
    ) -> None:
        self._cache = cache
        self._scheduler_factory = scheduler_factory
        self._join_timeout = join_timeout
        self._scheduler: Optional[RefreshScheduler] = None
        self._lock = threading.Lock()

    @property
    def cache(self) -> TokenCache:
        return self._cache

    @property
    def scheduler(self) -> Optional[RefreshScheduler]:
        """The currently running scheduler, if any."""
        return self._scheduler

    def start_session(self, user: str) -> RefreshScheduler:
        """Cancel any running scheduler, then start one for *user*."""
        with self._lock:
            self._stop_locked()
            scheduler = self._scheduler_factory(self._cache, user)
            scheduler.start()
            self._scheduler = scheduler
        logger.debug("Session started for %s", user)
        return scheduler

    def stop(self) -> None:
        """Cancel the running scheduler (if any) and wait for it."""
        with self._lock:
            self._stop_locked()

    def _stop_locked(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.stop(self._join_timeout)
        if self._scheduler.is_alive():
            logger.warning(
                "Refresh scheduler for %s did not stop within %ss",
                self._scheduler.user,
                self._join_timeout,
            )
        self._scheduler = None

    def logout(self, user: str) -> None:
        """Forget *user*'s credentials and end the active session.

        The scheduler is cancelled and joined first, then the stored token
        and matching last-user pointer are deleted under *user*'s refresh
        lock. A refresh already running therefore finishes before the delete
        and cannot store its token afterwards.

        Raises:
            StoreError: If the backend cannot delete the records. The
                scheduler is already stopped by then.
        """
        self.stop()
        self._cache.forget(user)
        logger.info("Logged out %s", user)

    def whoami(self) -> WhoAmI:
        """Report the last authenticated user and whether a token is stored for them."""
        user = self._cache.vault.last_user()
        if user is None:
            return WhoAmI()
        return WhoAmI(user=user, authenticated=self._cache.vault.load(user) is not None)

    def get_access_token(self, user: str, margin: int = 60) -> str:
        """Return a valid access token for *user*, refreshing if needed."""
        return self._cache.ensure_valid(user, margin).access_token

    def resume(self) -> Optional[str]:
        """Start a scheduler for the last user if a token is stored for them.

        Returns:
            The resumed username, or ``None`` if there was nothing to resume.
        """
        identity = self.whoami()
        if identity.user is None or not identity.authenticated:
            return None
        self.start_session(identity.user)
        return identity.user
