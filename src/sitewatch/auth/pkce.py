"""PKCE (:rfc:`7636`) verifier and S256 challenge generation."""

from __future__ import annotations

import base64
import hashlib
import secrets
import string
from typing import NamedTuple

VERIFIER_LENGTH = 128
_VERIFIER_ALPHABET = string.ascii_letters + string.digits


class PkcePair(NamedTuple):
    """A ``code_verifier`` and its derived ``code_challenge``.

    One pair is generated per login attempt. The verifier stays in process
    memory and is only ever sent to the token endpoint.
    """

    verifier: str
    challenge: str


def code_challenge(verifier: str) -> str:
    """Return the S256 challenge for *verifier*: unpadded base64url of its SHA-256."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce_pair() -> PkcePair:
    """Generate a fresh PKCE pair.

    The verifier is 128 characters drawn from ``[A-Za-z0-9]`` with
    :mod:`secrets`, the maximum length the RFC allows.

    Returns:
        A :class:`PkcePair` of ``(verifier, challenge)``.
    """
    verifier = "".join(secrets.choice(_VERIFIER_ALPHABET) for _ in range(VERIFIER_LENGTH))
    return PkcePair(verifier, code_challenge(verifier))
