"""Canonical Pydantic models shared across all sitewatch modules.

The models fall into two groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`AuthSettings`, :class:`MonitorConfig`, :class:`OutputConfig`
    and :class:`GlobalConfig`.

**Runtime models** -- produced by the auth and monitor layers:
    :class:`TokenRecord`, :class:`StoredToken`, :class:`LoginResult`,
    :class:`WhoAmI` and :class:`SiteStatus`.

All models use Pydantic v2. Token payloads are frozen: a token is replaced
wholesale on every exchange or refresh, never patched in place.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_AUTHORITY = "https://login.microsoftonline.com"
DEFAULT_SCOPES = "openid profile offline_access User.Read"
DEFAULT_GRAPH_URL = "https://graph.microsoft.com/v1.0"


# --- Tokens ---


class TokenRecord(BaseModel):
    """Token endpoint response, kept exactly as received.

    Unknown response fields (``scope``, ``ext_expires_in``, ...) are
    dropped. ``expires_in`` is a lifetime in seconds relative to the moment
    the response was received, see :class:`StoredToken`.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int
    token_type: str = "Bearer"
    id_token: Optional[str] = None


class StoredToken(BaseModel):
    """The durable unit persisted under ``(service, user)``.

    ``issued_at`` is stamped once, at receipt time, and never recomputed.

    Example::

        stored = StoredToken(token=record, issued_at=int(time.time()))
        stored.expires_at  # issued_at + token.expires_in
    """

    model_config = ConfigDict(frozen=True)

    token: TokenRecord
    issued_at: int = Field(description="Epoch seconds at which the token was received")

    @property
    def expires_at(self) -> int:
        """Absolute expiry time in epoch seconds."""
        return self.issued_at + self.token.expires_in


class LoginResult(BaseModel):
    """Outcome of a successful interactive login."""

    token: TokenRecord
    user: str


class WhoAmI(BaseModel):
    """Identity of the most recently authenticated user, if any."""

    user: Optional[str] = None
    authenticated: bool = False


# --- Monitor ---


class SiteStatus(BaseModel):
    """Latest availability observation for one monitored URL.

    Sites start out online so that the first failed check counts as an
    up-to-down transition.
    """

    url: str
    is_online: bool = True
    status_code: Optional[int] = None
    message: str = ""
    last_checked: Optional[datetime] = None


# --- Configuration ---


class AuthSettings(BaseModel):
    """Identity provider and credential storage settings.

    ``client_id`` and ``tenant_id`` are normally set once with
    ``sitewatch config set`` or supplied through ``SITEWATCH_CLIENT_ID`` /
    ``SITEWATCH_TENANT_ID``.
    """

    client_id: Optional[str] = Field(default=None, description="Application (client) id")
    tenant_id: str = Field(
        default="common", description="Directory (tenant) id, or common/organizations"
    )
    authority: str = Field(default=DEFAULT_AUTHORITY, description="Identity provider base URL")
    scopes: str = Field(default=DEFAULT_SCOPES, description="Space-separated scopes")
    service_name: str = Field(
        default="sitewatch", description="Credential store service namespace"
    )
    store: Literal["keyring", "file"] = Field(
        default="keyring", description="Credential store backend: keyring or file"
    )
    login_timeout: int = Field(default=300, description="Seconds to wait for the redirect")
    request_timeout: int = Field(default=10, description="HTTP timeout in seconds")
    refresh_margin: int = Field(
        default=60, description="Refresh tokens this many seconds before expiry"
    )
    graph_url: str = Field(default=DEFAULT_GRAPH_URL, description="Microsoft Graph base URL")


class MonitorConfig(BaseModel):
    """Website monitor settings stored in :class:`GlobalConfig`."""

    sites: list[str] = Field(default_factory=list)
    interval: int = Field(default=60, description="Seconds between check rounds")
    timeout: int = Field(default=10, description="Per-request timeout in seconds")


class OutputConfig(BaseModel):
    """Default output format preferences stored in :class:`GlobalConfig`."""

    format: Literal["auto", "json", "plain", "rich"] = Field(
        default="auto",
        description="Used when neither --json nor --plain is given",
    )


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/sitewatch/config.json``.

    Loaded and saved by :func:`~sitewatch.config.load_global_config` and
    :func:`~sitewatch.config.save_global_config`. Fields here have the
    lowest precedence and can be overridden by project config, environment
    variables, or CLI flags. See :func:`~sitewatch.config.resolve_config`
    for the full precedence chain.
    """

    auth: AuthSettings = Field(default_factory=AuthSettings)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
