"""Background refresh scheduler keeping one user's token fresh.

Each session runs one :class:`RefreshScheduler` on a daemon thread. The
loop computes a delay from the stored token's expiry, waits on its
cancellation event for that long, then calls
:meth:`~sitewatch.auth.tokens.TokenCache.ensure_valid`. Refresh failures are
logged and the loop carries on; the scheduler has no failure state.

State machine::

    IDLE --start--> WAITING(deadline)
    WAITING(deadline) --timer--> REFRESHING --> WAITING(next deadline)
    WAITING(deadline) --cancel--> CANCELLED (terminal)

A cancel that arrives while REFRESHING takes effect when the refresh call
returns.
"""

from __future__ import annotations

import enum
import logging
import threading
from typing import Optional

from sitewatch.auth.tokens import TokenCache
from sitewatch.exceptions import SitewatchError

logger = logging.getLogger(__name__)


class SchedulerState(str, enum.Enum):
    """Lifecycle states of a :class:`RefreshScheduler`."""

    IDLE = "idle"
    WAITING = "waiting"
    REFRESHING = "refreshing"
    CANCELLED = "cancelled"


class RefreshScheduler:
    """Refresh a user's token shortly before it expires until cancelled.

    Args:
        cache: Expiry policy used for loading and refreshing tokens.
        user: Username whose token is kept fresh.
        lead_time: Seconds before expiry at which to refresh.
        fallback_delay: Delay when the stored token is already inside the
            lead time, so a failing refresh is not retried in a tight loop.
        missing_delay: Delay between polls while no token is stored.
    """

    def __init__(
        self,
        cache: TokenCache,
        user: str,
        lead_time: int = 60,
        fallback_delay: float = 300.0,
        missing_delay: float = 60.0,
    ) -> None:
        self._cache = cache
        self._user = user
        self._lead_time = lead_time
        self._fallback_delay = fallback_delay
        self._missing_delay = missing_delay
        self._cancel = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._state = SchedulerState.IDLE
        self._deadline: Optional[float] = None
        self._refresh_count = 0

    @property
    def user(self) -> str:
        return self._user

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def deadline(self) -> Optional[float]:
        """Epoch time of the next refresh attempt while ``WAITING``."""
        return self._deadline

    @property
    def refresh_count(self) -> int:
        """Number of refresh attempts made so far."""
        return self._refresh_count

    def start(self) -> None:
        """Start the worker thread. A scheduler can be started only once."""
        if self._thread is not None:
            raise RuntimeError("RefreshScheduler already started")
        self._thread = threading.Thread(
            target=self._run,
            name=f"sitewatch-refresh-{self._user}",
            daemon=True,
        )
        self._thread.start()

    def cancel(self) -> None:
        """Signal the loop to stop at its next wait point."""
        self._cancel.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Cancel and wait for the worker thread to terminate."""
        self.cancel()
        self.join(timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def next_delay(self) -> tuple[float, bool]:
        """Compute the wait before the next cycle.

        Returns:
            A tuple of ``(delay_seconds, token_present)``. When no token is
            stored, the delay is ``missing_delay`` and no refresh should
            follow the wait.
        """
        try:
            stored = self._cache.vault.load(self._user)
        except SitewatchError as exc:
            logger.warning("Cannot read stored token for %s: %s", self._user, exc)
            return self._missing_delay, False
        if stored is None:
            return self._missing_delay, False
        delay = stored.expires_at - self._cache.now() - self._lead_time
        if delay <= 0:
            delay = self._fallback_delay
        return delay, True

    def _run(self) -> None:
        logger.debug("Refresh scheduler started for %s", self._user)
        while True:
            delay, token_present = self.next_delay()
            self._deadline = self._cache.now() + delay
            self._state = SchedulerState.WAITING
            if self._cancel.wait(delay):
                break
            if not token_present:
                continue
            self._state = SchedulerState.REFRESHING
            self._refresh_count += 1
            try:
                self._cache.ensure_valid(self._user, self._lead_time)
            except SitewatchError as exc:
                logger.warning("Background token refresh for %s failed: %s", self._user, exc)
            except Exception:
                logger.exception("Unexpected error refreshing token for %s", self._user)
        self._deadline = None
        self._state = SchedulerState.CANCELLED
        logger.debug("Refresh scheduler for %s cancelled", self._user)
