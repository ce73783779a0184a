"""Bearer-authenticated GETs with one forced refresh on ``401``.

:class:`ProtectedResourceClient` obtains a token through the expiry policy,
sends the request, and if the server still rejects the token it forces a
just-in-time refresh (margin ``0``) and retries exactly once. The response of
the second attempt is returned whatever its status.
"""

from __future__ import annotations

import base64
import logging
from typing import Optional

import httpx

from sitewatch.auth.tokens import TokenCache
from sitewatch.exceptions import NetworkError

logger = logging.getLogger(__name__)

PROACTIVE_MARGIN = 60


class ProtectedResourceClient:
    """Call protected HTTP resources on behalf of a signed-in user.

    Args:
        cache: Expiry policy handing out access tokens.
        graph_url: Microsoft Graph base URL used by :meth:`fetch_user_photo`.
        timeout: Per-request timeout in seconds.
        client: Optional pre-built :class:`httpx.Client` (tests inject one
            with a mock transport).
    """

    def __init__(
        self,
        cache: TokenCache,
        graph_url: str = "https://graph.microsoft.com/v1.0",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._cache = cache
        self._graph_url = graph_url.rstrip("/")
        self._client = client if client is not None else httpx.Client(timeout=timeout)
        self._owns_client = client is None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "ProtectedResourceClient":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def fetch(self, url: str, user: str) -> httpx.Response:
        """GET *url* with *user*'s bearer token, retrying once on ``401``.

        Raises:
            NoStoredToken: If *user* has no stored token.
            MissingRefreshToken: If a refresh is due but impossible.
            NetworkError: On transport failure of either attempt.
            ProviderError: If a required refresh is rejected.
        """
        token = self._cache.ensure_valid(user, PROACTIVE_MARGIN)
        response = self._get(url, token.access_token)
        if response.status_code != 401:
            return response

        logger.info("GET %s returned 401; forcing token refresh", url)
        token = self._cache.ensure_valid(user, 0)
        return self._get(url, token.access_token)

    def fetch_user_photo(self, user: str) -> Optional[str]:
        """Return the signed-in user's Graph profile photo as a ``data:`` URL.

        Best effort: any non-200 answer yields ``None``. Token and transport
        failures still propagate.
        """
        response = self.fetch(f"{self._graph_url}/me/photo/$value", user)
        if response.status_code != 200:
            logger.debug("No profile photo for %s (HTTP %d)", user, response.status_code)
            return None
        content_type = response.headers.get("content-type", "image/jpeg").split(";")[0]
        encoded = base64.b64encode(response.content).decode("ascii")
        return f"data:{content_type};base64,{encoded}"

    def _get(self, url: str, access_token: str) -> httpx.Response:
        try:
            return self._client.get(url, headers={"Authorization": f"Bearer {access_token}"})
        except httpx.HTTPError as exc:
            raise NetworkError(f"GET {url} failed: {exc}") from exc
