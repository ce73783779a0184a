"""Sign-in subsystem: PKCE login, credential storage, and token lifecycle.

The pieces are wired together by :func:`create_auth_context`, which builds a
credential store, token vault, exchange client, expiry policy and session
manager from :class:`~sitewatch.models.AuthSettings`.

Key public names:

* :class:`LoginCoordinator` -- interactive Authorization Code + PKCE login.
* :class:`TokenCache` -- expiry policy (:meth:`~TokenCache.ensure_valid`).
* :class:`SessionManager` -- logout, whoami, and the refresh scheduler.
* :class:`ProtectedResourceClient` -- bearer GETs with one retry on 401.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from sitewatch.auth.credential_store import (
    CredentialStore,
    FileCredentialStore,
    KeyringCredentialStore,
    TokenVault,
    create_store,
)
from sitewatch.auth.exchange import TokenExchangeClient
from sitewatch.auth.login import LoginCoordinator
from sitewatch.auth.resource import ProtectedResourceClient
from sitewatch.auth.scheduler import RefreshScheduler, SchedulerState
from sitewatch.auth.session import SessionManager
from sitewatch.auth.tokens import TokenCache
from sitewatch.exceptions import ConfigError
from sitewatch.models import AuthSettings

__all__ = [
    "AuthContext",
    "CredentialStore",
    "FileCredentialStore",
    "KeyringCredentialStore",
    "LoginCoordinator",
    "ProtectedResourceClient",
    "RefreshScheduler",
    "SchedulerState",
    "SessionManager",
    "TokenCache",
    "TokenExchangeClient",
    "TokenVault",
    "create_auth_context",
]


@dataclass
class AuthContext:
    """Everything the CLI needs to act on behalf of a user."""

    settings: AuthSettings
    client_id: str
    vault: TokenVault
    exchange: TokenExchangeClient
    cache: TokenCache
    sessions: SessionManager

    def coordinator(self, **kwargs: object) -> LoginCoordinator:
        """Build a :class:`LoginCoordinator` bound to this context."""
        kwargs.setdefault("login_timeout", float(self.settings.login_timeout))
        return LoginCoordinator(self.exchange, self.sessions, **kwargs)  # type: ignore[arg-type]

    def resource_client(self, client: Optional[httpx.Client] = None) -> ProtectedResourceClient:
        return ProtectedResourceClient(
            self.cache,
            graph_url=self.settings.graph_url,
            timeout=float(self.settings.request_timeout),
            client=client,
        )


def create_auth_context(
    settings: AuthSettings,
    store: Optional[CredentialStore] = None,
    http_client: Optional[httpx.Client] = None,
) -> AuthContext:
    """Assemble the auth components for *settings*.

    Args:
        settings: Effective auth settings (see
            :func:`~sitewatch.config.resolve_config`).
        store: Credential backend override; defaults to the one named by
            ``settings.store``.
        http_client: Optional :class:`httpx.Client` for the token endpoint.

    Raises:
        ConfigError: If no client id is configured.
    """
    if not settings.client_id:
        raise ConfigError(
            "No client id configured. Set one with "
            "'sitewatch config set auth.client_id <id>' or SITEWATCH_CLIENT_ID."
        )
    vault = TokenVault(store if store is not None else create_store(settings), settings.service_name)
    exchange = TokenExchangeClient(settings, client=http_client)
    cache = TokenCache(vault, exchange, settings.client_id, settings.tenant_id)
    margin = settings.refresh_margin

    def _scheduler(cache: TokenCache, user: str) -> RefreshScheduler:
        return RefreshScheduler(cache, user, lead_time=margin)

    sessions = SessionManager(cache, scheduler_factory=_scheduler)
    return AuthContext(
        settings=settings,
        client_id=settings.client_id,
        vault=vault,
        exchange=exchange,
        cache=cache,
        sessions=sessions,
    )
