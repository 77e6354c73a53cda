"""Persistent secret storage for tokens and OAuth client credentials.

Secrets live in ``~/.local/share/tokenlink/credentials/<namespace>.json``
(XDG) or the platform-equivalent directory. Each namespace is one JSON
object mapping a key (the service id) to a string. Files are written
atomically via :func:`~tokenlink.config._atomic_write` with ``0o600``
permissions so that secrets are never world-readable, even momentarily.

Two outcomes are kept apart on purpose: a missing key is ``None``, while a
store that cannot be read or written raises
:class:`~tokenlink.exceptions.CredentialStoreUnavailableError`. Callers use
the latter to point the user at the environment-variable fallback. An entry
that is stored but no longer parses raises
:class:`~tokenlink.exceptions.CorruptCredentialError` instead.

Environment variables always win over the store::

    TOKENLINK_<SERVICE>_TOKEN
    TOKENLINK_<SERVICE>_CLIENT_ID
    TOKENLINK_<SERVICE>_CLIENT_SECRET
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from tokenlink.config import _atomic_write, get_credentials_dir
from tokenlink.exceptions import CorruptCredentialError, CredentialStoreUnavailableError
from tokenlink.models import ClientCredentials, Token


def env_var_name(service_id: str, suffix: str) -> str:
    """Return e.g. ``TOKENLINK_SLACK_CLIENT_ID`` for ``("slack", "CLIENT_ID")``."""
    service = service_id.upper().replace("-", "_")
    return f"TOKENLINK_{service}_{suffix}"


class SecretStore:
    """Key/value secret storage for one namespace.

    Args:
        namespace: File stem inside the credentials directory.
        directory: Override the credentials directory (tests).

    Example::

        store = SecretStore("tokens")
        store.set("slack", "xoxp-...")
        assert store.get("slack") == "xoxp-..."
        store.delete("slack")
    """

    def __init__(self, namespace: str, directory: Optional[Path] = None) -> None:
        self._namespace = namespace
        self._directory = directory

    @property
    def path(self) -> Path:
        """The filesystem path of this namespace's file."""
        try:
            directory = self._directory or get_credentials_dir()
        except OSError as exc:
            raise self._unavailable(exc) from exc
        return directory / f"{self._namespace}.json"

    def _unavailable(self, exc: Exception) -> CredentialStoreUnavailableError:
        return CredentialStoreUnavailableError(
            f"Secret store '{self._namespace}' is unavailable: {exc}\n"
            "Set credentials through environment variables instead, e.g. "
            f"{env_var_name('<service>', 'TOKEN')}."
        )

    def _read(self) -> dict[str, str]:
        path = self.path
        if not path.is_file():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise self._unavailable(exc) from exc
        if not isinstance(data, dict):
            raise self._unavailable(ValueError(f"{path} does not contain a JSON object"))
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: dict[str, str]) -> None:
        try:
            _atomic_write(self.path, json.dumps(data, indent=2, sort_keys=True) + "\n", mode=0o600)
        except OSError as exc:
            raise self._unavailable(exc) from exc

    def get(self, key: str) -> Optional[str]:
        """Return the secret stored under *key*, or ``None`` if there is none."""
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        """Store *value* under *key*, replacing any previous value."""
        data = self._read()
        data[key] = value
        self._write(data)

    def delete(self, key: str) -> bool:
        """Remove *key*. Returns ``False`` if it was not stored."""
        data = self._read()
        if key not in data:
            return False
        del data[key]
        self._write(data)
        return True

    def keys(self) -> list[str]:
        return sorted(self._read())


class TokenStore:
    """Tokens obtained by ``tokenlink login``, one per service."""

    def __init__(self, secrets: Optional[SecretStore] = None) -> None:
        self._secrets = secrets or SecretStore("tokens")

    def get(self, service_id: str) -> Optional[Token]:
        """Return the stored token, or ``None``.

        Raises:
            CredentialStoreUnavailableError: If the store is unreadable.
            CorruptCredentialError: If the entry does not parse.
        """
        raw = self._secrets.get(service_id)
        if raw is None:
            return None
        try:
            return Token.model_validate_json(raw)
        except ValidationError as exc:
            raise CorruptCredentialError(
                f"Stored token for {service_id} is corrupt. "
                f"Run 'tokenlink logout {service_id}' and log in again."
            ) from exc

    def save(self, service_id: str, token: Token) -> None:
        self._secrets.set(service_id, token.model_dump_json())

    def delete(self, service_id: str) -> bool:
        return self._secrets.delete(service_id)


class ClientCredentialStore:
    """OAuth client id/secret pairs saved by ``tokenlink setup``."""

    def __init__(self, secrets: Optional[SecretStore] = None) -> None:
        self._secrets = secrets or SecretStore("clients")

    def get(self, service_id: str) -> Optional[ClientCredentials]:
        raw = self._secrets.get(service_id)
        if raw is None:
            return None
        try:
            return ClientCredentials.model_validate_json(raw)
        except ValidationError as exc:
            raise CorruptCredentialError(
                f"Stored client credentials for {service_id} are corrupt. "
                f"Run 'tokenlink setup {service_id}' again."
            ) from exc

    def save(self, service_id: str, credentials: ClientCredentials) -> None:
        self._secrets.set(service_id, credentials.model_dump_json())

    def delete(self, service_id: str) -> bool:
        return self._secrets.delete(service_id)


def resolve_client_credentials(
    service_id: str,
    store: Optional[ClientCredentialStore] = None,
) -> Optional[ClientCredentials]:
    """Find the OAuth client for *service_id*.

    ``TOKENLINK_<SERVICE>_CLIENT_ID`` and ``TOKENLINK_<SERVICE>_CLIENT_SECRET``
    take precedence over the store; both must be set to be used.

    Returns:
        The credentials, or ``None`` if neither source has them.
    """
    client_id = os.environ.get(env_var_name(service_id, "CLIENT_ID"), "")
    client_secret = os.environ.get(env_var_name(service_id, "CLIENT_SECRET"), "")
    if client_id and client_secret:
        return ClientCredentials(client_id=client_id, client_secret=client_secret)
    return (store or ClientCredentialStore()).get(service_id)


def resolve_token(service_id: str, store: Optional[TokenStore] = None) -> Optional[Token]:
    """Return the token for *service_id*, preferring ``TOKENLINK_<SERVICE>_TOKEN``."""
    env_token = os.environ.get(env_var_name(service_id, "TOKEN"), "")
    if env_token:
        return Token(access_token=env_token)
    return (store or TokenStore()).get(service_id)
