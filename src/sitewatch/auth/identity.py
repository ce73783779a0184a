"""Best-effort user identity extraction from a token response.

The ID token is decoded without signature verification. The result is only
used as a display name and as the credential store key, never for an
authorization decision.
"""

from __future__ import annotations

import base64
import getpass
import json
import logging
import os
from typing import Any, Optional

from sitewatch.models import TokenRecord

logger = logging.getLogger(__name__)

_IDENTITY_CLAIMS = ("preferred_username", "upn", "email")


def decode_jwt_claims(jwt: str) -> Optional[dict[str, Any]]:
    """Decode the payload segment of a JWT without verifying it.

    Args:
        jwt: A compact-serialised JWT (``header.payload.signature``).

    Returns:
        The claims dict, or ``None`` if the token is not decodable.
    """
    parts = jwt.split(".")
    if len(parts) < 2:
        return None
    payload = parts[1]
    payload += "=" * (-len(payload) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload.encode("ascii")))
    except (ValueError, UnicodeError):
        return None
    if not isinstance(claims, dict):
        return None
    return claims


def _os_user() -> str:
    for var in ("USERNAME", "USER"):
        value = os.environ.get(var)
        if value:
            return value
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def extract_user(token: TokenRecord) -> str:
    """Return a username for *token*. Never raises.

    Takes the first string claim among ``preferred_username``, ``upn`` and
    ``email`` from the ID token. Falls back to the operating system account
    name, then to ``"unknown"``.
    """
    if token.id_token:
        claims = decode_jwt_claims(token.id_token)
        if claims is None:
            logger.debug("ID token payload could not be decoded")
        else:
            for claim in _IDENTITY_CLAIMS:
                value = claims.get(claim)
                if isinstance(value, str) and value:
                    return value
    return _os_user()
