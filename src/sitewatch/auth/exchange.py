"""Token endpoint client for the authorization-code and refresh-token grants.

Both grants POST form-encoded parameters to
``<authority>/<tenant>/oauth2/v2.0/token`` and parse the JSON body into a
:class:`~sitewatch.models.TokenRecord`. The client is stateless and never
retries; retry policy belongs to the callers.
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from sitewatch.exceptions import NetworkError, ProviderError
from sitewatch.models import AuthSettings, TokenRecord

logger = logging.getLogger(__name__)


class TokenExchangeClient:
    """Talk to the identity provider's authorize and token endpoints.

    Args:
        settings: Provider settings (authority, scopes, request timeout).
        client: Optional pre-built :class:`httpx.Client`. When omitted, a
            client with ``settings.request_timeout`` is created per call.
    """

    def __init__(
        self,
        settings: AuthSettings,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._settings = settings
        self._client = client

    def _endpoint(self, tenant: str, name: str) -> str:
        authority = self._settings.authority.rstrip("/")
        return f"{authority}/{tenant}/oauth2/v2.0/{name}"

    def token_endpoint(self, tenant: str) -> str:
        return self._endpoint(tenant, "token")

    def authorization_url(
        self,
        client_id: str,
        tenant: str,
        redirect_uri: str,
        code_challenge: str,
    ) -> str:
        """Build the browser URL that starts the authorization-code flow.

        Args:
            client_id: Application (client) id.
            tenant: Directory id or ``common``.
            redirect_uri: Loopback URI the provider redirects back to.
            code_challenge: S256 PKCE challenge.

        Returns:
            The fully-formed authorization URL.
        """
        params = {
            "client_id": client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "response_mode": "query",
            "scope": self._settings.scopes,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{self._endpoint(tenant, 'authorize')}?{urlencode(params)}"

    def exchange(
        self,
        code: str,
        verifier: str,
        redirect_uri: str,
        client_id: str,
        tenant: str,
    ) -> TokenRecord:
        """Redeem an authorization code for tokens.

        Args:
            code: Authorization code captured from the redirect.
            verifier: PKCE verifier matching the challenge sent earlier.
            redirect_uri: The same redirect URI used in the authorize request.
            client_id: Application (client) id.
            tenant: Directory id or ``common``.

        Returns:
            The parsed :class:`~sitewatch.models.TokenRecord`.

        Raises:
            NetworkError: On transport failure or timeout.
            ProviderError: On a non-2xx response or a malformed body.
        """
        data = {
            "client_id": client_id,
            "code": code,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
            "code_verifier": verifier,
        }
        return self._post_token(tenant, data, "authorization_code")

    def refresh(self, refresh_token: str, client_id: str, tenant: str) -> TokenRecord:
        """Redeem a refresh token for a new token set.

        Raises:
            NetworkError: On transport failure or timeout.
            ProviderError: On a non-2xx response or a malformed body.
        """
        data = {
            "client_id": client_id,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        return self._post_token(tenant, data, "refresh_token")

    def _post_token(self, tenant: str, data: dict[str, str], grant: str) -> TokenRecord:
        url = self.token_endpoint(tenant)
        logger.debug("POST %s (grant_type=%s)", url, grant)
        try:
            if self._client is not None:
                response = self._client.post(
                    url, data=data, headers={"Accept": "application/json"}
                )
            else:
                response = httpx.post(
                    url,
                    data=data,
                    headers={"Accept": "application/json"},
                    timeout=float(self._settings.request_timeout),
                )
        except httpx.HTTPError as exc:
            raise NetworkError(f"Token request to {url} failed: {exc}") from exc

        if not response.is_success:
            raise _provider_error(response, grant)

        try:
            payload: Any = response.json()
        except ValueError as exc:
            raise ProviderError(
                f"Token endpoint returned a non-JSON body ({grant})",
                status_code=response.status_code,
            ) from exc

        try:
            return TokenRecord.model_validate(payload)
        except ValidationError as exc:
            raise ProviderError(
                f"Token endpoint returned an unusable token response ({grant}): {exc}",
                status_code=response.status_code,
            ) from exc


def _provider_error(response: httpx.Response, grant: str) -> ProviderError:
    """Build a :class:`ProviderError` from an error response, keeping OAuth2 fields."""
    error: Optional[str] = None
    description: Optional[str] = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        description = body.get("error_description")

    message = f"Token request ({grant}) failed with status {response.status_code}"
    if error:
        message += f": {error}"
    if description:
        message += f" - {description}"
    return ProviderError(
        message,
        status_code=response.status_code,
        error=error,
        description=description,
    )
