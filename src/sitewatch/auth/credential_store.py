"""Secure credential persistence keyed by ``(service, key)``.

Two backends implement :class:`CredentialStore`:

* :class:`KeyringCredentialStore` -- the operating system secret store via
  the :mod:`keyring` library (Windows Credential Manager, macOS Keychain,
  Secret Service on Linux). This is the default.
* :class:`FileCredentialStore` -- one JSON file per service under
  ``~/.local/share/sitewatch/credentials/`` (XDG) written atomically with
  ``0o600`` permissions, for headless machines without a keyring daemon.

:class:`TokenVault` sits on top of either backend and owns the layout of
persisted tokens: one :class:`~sitewatch.models.StoredToken` per user plus a
*last user* pointer naming the most recently authenticated account.

See Also:
    :class:`~sitewatch.auth.tokens.TokenCache` -- the expiry policy that
    reads and replaces stored tokens.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import keyring
import keyring.errors
from pydantic import ValidationError

from sitewatch.config import _atomic_write, get_data_dir
from sitewatch.exceptions import ConfigError, StoreError
from sitewatch.models import AuthSettings, StoredToken

logger = logging.getLogger(__name__)


class CredentialStore(ABC):
    """Abstract secret store addressed by ``(service, key)``.

    Implementations raise :class:`~sitewatch.exceptions.StoreError` when the
    backend itself fails. A missing key is not an error: :meth:`get`
    returns ``None`` and :meth:`delete` does nothing.
    """

    @abstractmethod
    def set(self, service: str, key: str, value: str) -> None:
        """Store *value* under ``(service, key)``, replacing any previous value."""

    @abstractmethod
    def get(self, service: str, key: str) -> Optional[str]:
        """Return the value under ``(service, key)``, or ``None`` if absent."""

    @abstractmethod
    def delete(self, service: str, key: str) -> None:
        """Remove ``(service, key)``. No-op when the key does not exist."""


class KeyringCredentialStore(CredentialStore):
    """Credential store backed by the active :mod:`keyring` backend."""

    def set(self, service: str, key: str, value: str) -> None:
        try:
            keyring.set_password(service, key, value)
        except keyring.errors.KeyringError as exc:
            raise StoreError(f"Failed to write '{key}' to the system keyring: {exc}") from exc

    def get(self, service: str, key: str) -> Optional[str]:
        try:
            return keyring.get_password(service, key)
        except keyring.errors.KeyringError as exc:
            raise StoreError(f"Failed to read '{key}' from the system keyring: {exc}") from exc

    def delete(self, service: str, key: str) -> None:
        try:
            keyring.delete_password(service, key)
        except keyring.errors.PasswordDeleteError:
            # Raised by backends for missing entries.
            logger.debug("No keyring entry to delete for %s", key)
        except keyring.errors.KeyringError as exc:
            raise StoreError(f"Failed to delete '{key}' from the system keyring: {exc}") from exc


def _credentials_dir() -> Path:
    """Return the credentials directory, creating it if needed."""
    path = get_data_dir() / "credentials"
    path.mkdir(parents=True, exist_ok=True)
    return path


class FileCredentialStore(CredentialStore):
    """Credential store persisting each service as a ``0o600`` JSON object on disk.

    All writes are atomic: content is written to a temporary file in the
    same directory, fsynced, then renamed into place. Read-modify-write
    cycles are serialised within the process.

    Args:
        directory: Override for the credentials directory (defaults to
            ``<data_dir>/credentials``).
    """

    def __init__(self, directory: Optional[Path] = None) -> None:
        self._directory = directory
        self._lock = threading.Lock()

    def path_for(self, service: str) -> Path:
        """The filesystem path holding all keys of *service*."""
        directory = self._directory if self._directory is not None else _credentials_dir()
        return directory / f"{service}.json"

    def _read(self, service: str) -> dict[str, str]:
        path = self.path_for(service)
        if not path.is_file():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise StoreError(f"Cannot read credential file {path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise StoreError(f"Corrupt credential file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StoreError(f"Corrupt credential file {path}: expected a JSON object")
        return data

    def _write(self, service: str, data: dict[str, str]) -> None:
        path = self.path_for(service)
        try:
            _atomic_write(path, json.dumps(data, indent=2) + "\n", mode=0o600)
        except OSError as exc:
            raise StoreError(f"Cannot write credential file {path}: {exc}") from exc

    def set(self, service: str, key: str, value: str) -> None:
        with self._lock:
            data = self._read(service)
            data[key] = value
            self._write(service, data)

    def get(self, service: str, key: str) -> Optional[str]:
        with self._lock:
            return self._read(service).get(key)

    def delete(self, service: str, key: str) -> None:
        with self._lock:
            data = self._read(service)
            if key not in data:
                return
            del data[key]
            self._write(service, data)


def create_store(settings: AuthSettings) -> CredentialStore:
    """Instantiate the backend named by ``settings.store``.

    Raises:
        ConfigError: If the backend name is unknown.
    """
    if settings.store == "keyring":
        return KeyringCredentialStore()
    if settings.store == "file":
        return FileCredentialStore()
    raise ConfigError(f"Unknown credential store: {settings.store}")


class TokenVault:
    """Persisted tokens and the last-user pointer for one service namespace.

    Each user's :class:`~sitewatch.models.StoredToken` lives under
    ``(service, user)`` as JSON. The pointer lives under
    ``(service, "<service>::last_user")`` and holds a plain username.

    The token write and the pointer write of :meth:`save` happen under one
    lock, as do the two deletes of :meth:`remove`, so threads in this process
    never observe a pointer naming a user whose token is mid-write.

    Args:
        store: The backend to persist into.
        service: Service namespace, normally ``AuthSettings.service_name``.

    Example::

        vault = TokenVault(KeyringCredentialStore(), "sitewatch")
        vault.save("ada@example.com", StoredToken(token=record, issued_at=now))
        vault.last_user()  # "ada@example.com"
    """

    def __init__(self, store: CredentialStore, service: str) -> None:
        self._store = store
        self._service = service
        self._lock = threading.RLock()

    @property
    def service(self) -> str:
        return self._service

    @property
    def last_user_key(self) -> str:
        """Key of the last-user pointer within the service namespace."""
        return f"{self._service}::last_user"

    def save(self, user: str, stored: StoredToken) -> None:
        """Replace the token for *user* and point the last-user record at them.

        Raises:
            StoreError: If either write fails.
        """
        with self._lock:
            self._store.set(self._service, user, stored.model_dump_json())
            self._store.set(self._service, self.last_user_key, user)
        logger.debug("Stored token for %s (issued_at=%d)", user, stored.issued_at)

    def load(self, user: str) -> Optional[StoredToken]:
        """Return the stored token for *user*, or ``None`` if none is stored.

        Raises:
            StoreError: If the backend fails or the stored record is corrupt.
        """
        with self._lock:
            raw = self._store.get(self._service, user)
        if raw is None:
            return None
        try:
            return StoredToken.model_validate_json(raw)
        except ValidationError as exc:
            raise StoreError(f"Stored credentials for '{user}' are corrupt: {exc}") from exc

    def last_user(self) -> Optional[str]:
        """Return the most recently authenticated username, if any."""
        with self._lock:
            return self._store.get(self._service, self.last_user_key)

    def remove(self, user: str) -> None:
        """Delete the token for *user*, and the last-user pointer if it names them."""
        with self._lock:
            self._store.delete(self._service, user)
            if self._store.get(self._service, self.last_user_key) == user:
                self._store.delete(self._service, self.last_user_key)
        logger.debug("Removed stored token for %s", user)
