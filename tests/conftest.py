"""Shared test fixtures for sitewatch.

Provides isolated config directories, an in-memory keyring backend, a
controllable clock, token builders, and output-state resets. These fixtures
are discovered by pytest and available to all test modules.
"""

from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any, Callable, Optional

import keyring
import keyring.errors
import pytest
from keyring.backend import KeyringBackend

from sitewatch.auth.credential_store import KeyringCredentialStore, TokenVault
from sitewatch.models import TokenRecord
from sitewatch.output import OutputFormat, OutputManager, reset_output, set_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams and the
    test finishes, the cached references become stale.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Keyring
# ---------------------------------------------------------------------------


class MemoryKeyring(KeyringBackend):
    """Keyring backend holding secrets in a dict."""

    priority = 1  # type: ignore[assignment]

    def __init__(self) -> None:
        super().__init__()
        self.entries: dict[tuple[str, str], str] = {}

    def get_password(self, service: str, username: str) -> Optional[str]:
        return self.entries.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self.entries[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        try:
            del self.entries[(service, username)]
        except KeyError:
            raise keyring.errors.PasswordDeleteError("Password not found") from None


class BrokenKeyring(KeyringBackend):
    """Keyring backend whose every operation fails."""

    priority = 1  # type: ignore[assignment]

    def get_password(self, service: str, username: str) -> Optional[str]:
        raise keyring.errors.KeyringLocked("keyring is locked")

    def set_password(self, service: str, username: str, password: str) -> None:
        raise keyring.errors.PasswordSetError("keyring is locked")

    def delete_password(self, service: str, username: str) -> None:
        raise keyring.errors.KeyringLocked("keyring is locked")


@pytest.fixture()
def memory_keyring() -> MemoryKeyring:
    """Install an in-memory keyring for the duration of the test."""
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


@pytest.fixture()
def broken_keyring() -> BrokenKeyring:
    previous = keyring.get_keyring()
    backend = BrokenKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


@pytest.fixture()
def vault(memory_keyring: MemoryKeyring) -> TokenVault:
    """A TokenVault over the in-memory keyring, service ``sitewatch-test``."""
    return TokenVault(KeyringCredentialStore(), "sitewatch-test")


# ---------------------------------------------------------------------------
# Clock and tokens
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock returning a settable epoch time."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


def _b64url(data: dict[str, Any]) -> str:
    raw = json.dumps(data).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


@pytest.fixture()
def make_id_token() -> Callable[..., str]:
    """Build an unsigned JWT carrying the given claims."""

    def _make(**claims: Any) -> str:
        header = _b64url({"alg": "none", "typ": "JWT"})
        return f"{header}.{_b64url(claims)}.signature"

    return _make


@pytest.fixture()
def make_token() -> Callable[..., TokenRecord]:
    """Build a TokenRecord with test defaults."""

    def _make(
        access_token: str = "AT1",
        refresh_token: Optional[str] = "RT1",
        expires_in: int = 3600,
        id_token: Optional[str] = None,
    ) -> TokenRecord:
        return TokenRecord(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=expires_in,
            token_type="Bearer",
            id_token=id_token,
        )

    return _make


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME, XDG_CACHE_HOME, and XDG_DATA_HOME to
    subdirectories of tmp_path, clears SITEWATCH_* environment variables,
    and changes the working directory to tmp_path.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("sitewatch.config._is_xdg_platform", lambda: True)

    for var in ["SITEWATCH_CLIENT_ID", "SITEWATCH_TENANT_ID", "SITEWATCH_STORE"]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a quiet PLAIN-format OutputManager for the test."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
