"""Token expiry policy: return a cached token or refresh it when due.

A stored token with ``issued_at = T`` and ``expires_in = E`` is valid at
time ``now`` under margin ``M`` iff ``now + M < T + E``. Otherwise
:meth:`TokenCache.ensure_valid` redeems the stored refresh token and
replaces the stored token wholesale.

Refreshes are serialised per user within the process. A caller that waited
for the lock re-reads the store first, so two threads racing past expiry
redeem the refresh token once and both receive the new access token.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from sitewatch.auth.credential_store import TokenVault
from sitewatch.auth.exchange import TokenExchangeClient
from sitewatch.exceptions import MissingRefreshToken, NoStoredToken
from sitewatch.models import StoredToken, TokenRecord

logger = logging.getLogger(__name__)


def is_valid(stored: StoredToken, now: float, margin: int) -> bool:
    """Return True if *stored* is still usable at *now* with *margin* seconds to spare."""
    return now + margin < stored.expires_at


class TokenCache:
    """Hand out valid access tokens, refreshing through the provider when due.

    Args:
        vault: Persisted tokens and last-user pointer.
        exchange: Token endpoint client used for the refresh grant.
        client_id: Application (client) id sent with refresh requests.
        tenant: Directory id or ``common``.
        clock: Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        vault: TokenVault,
        exchange: TokenExchangeClient,
        client_id: str,
        tenant: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._vault = vault
        self._exchange = exchange
        self._client_id = client_id
        self._tenant = tenant
        self._clock = clock
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def vault(self) -> TokenVault:
        return self._vault

    def now(self) -> float:
        """Current time according to the injected clock."""
        return self._clock()

    def _lock_for(self, user: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(user)
            if lock is None:
                lock = self._locks[user] = threading.Lock()
            return lock

    def persist(self, user: str, token: TokenRecord) -> StoredToken:
        """Stamp *token* with the current time and store it for *user*.

        Raises:
            StoreError: If the backend write fails.
        """
        stored = StoredToken(token=token, issued_at=int(self._clock()))
        self._vault.save(user, stored)
        return stored

    def ensure_valid(self, user: str, margin: int) -> TokenRecord:
        """Return a token for *user* that is valid for at least *margin* more seconds.

        Args:
            user: Username the token is stored under.
            margin: Seconds of remaining lifetime required. ``60`` for
                proactive callers, ``0`` to refresh only once actually
                expired.

        Returns:
            The cached :class:`~sitewatch.models.TokenRecord` when still
            valid, otherwise the freshly refreshed one.

        Raises:
            NoStoredToken: If nothing is stored for *user*.
            MissingRefreshToken: If a refresh is due but no refresh token
                is stored.
            NetworkError: If the refresh request cannot reach the provider.
            ProviderError: If the provider rejects the refresh.
            StoreError: If the store cannot be read or the refreshed token
                cannot be persisted.
        """
        stored = self._load(user)
        if is_valid(stored, self._clock(), margin):
            return stored.token

        with self._lock_for(user):
            # Another thread may have refreshed while we waited.
            stored = self._load(user)
            if is_valid(stored, self._clock(), margin):
                return stored.token

            refresh_token = stored.token.refresh_token
            if not refresh_token:
                raise MissingRefreshToken(user)

            logger.info("Refreshing access token for %s", user)
            token = self._exchange.refresh(refresh_token, self._client_id, self._tenant)
            if token.refresh_token is None:
                # Providers may omit the refresh token when it is not rotated.
                token = token.model_copy(update={"refresh_token": refresh_token})
            self.persist(user, token)
            return token

    def forget(self, user: str) -> None:
        """Delete *user*'s stored token and the last-user pointer if it names them.

        Waits for any refresh of *user* already in progress, so the refreshed
        token cannot be written back after the delete.

        Raises:
            StoreError: If the backend delete fails.
        """
        with self._lock_for(user):
            self._vault.remove(user)

    def _load(self, user: str) -> StoredToken:
        stored = self._vault.load(user)
        if stored is None:
            raise NoStoredToken(user)
        return stored
