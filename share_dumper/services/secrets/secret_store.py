"""
Credential storage for SMB passwords.

Entries are keyed ``account@host``. Passwords never go to the settings file;
they live in the OS keyring (macOS Keychain on the target machines).
"""

import json
import logging
from typing import Dict, List, Protocol

import keyring
import keyring.errors

from share_dumper.core.exceptions import SecretNotFound

KEYRING_SERVICE = "Share Dumper SMB Credentials"
_INDEX_ACCOUNT = "__share_dumper_index__"


def entry_key(account: str, host: str) -> str:
    return f"{account}@{host}"


class SecretStore(Protocol):
    def save(self, account: str, host: str, secret: str) -> None: ...

    def retrieve(self, account: str, host: str) -> str: ...

    def delete(self, account: str, host: str) -> None: ...

    def list(self) -> List[str]: ...


class KeyringSecretStore:
    """
    SecretStore backed by ``keyring``.

    Most keyring backends cannot enumerate entries, so the stored keys are
    also kept as a JSON list under an index entry.
    """

    def __init__(self, service: str = KEYRING_SERVICE):
        self.service = service

    def save(self, account: str, host: str, secret: str) -> None:
        key = entry_key(account, host)
        keyring.set_password(self.service, key, secret)
        keys = self._read_index()
        if key not in keys:
            keys.append(key)
            self._write_index(keys)
        logging.debug(f"Password stored in keyring for {key}")

    def retrieve(self, account: str, host: str) -> str:
        """
        Raises:
            SecretNotFound: Nothing stored for ``account@host``.
        """
        secret = keyring.get_password(self.service, entry_key(account, host))
        if secret is None:
            raise SecretNotFound(account, host)
        return secret

    def delete(self, account: str, host: str) -> None:
        key = entry_key(account, host)
        try:
            keyring.delete_password(self.service, key)
        except keyring.errors.PasswordDeleteError:
            logging.debug(f"No keyring entry to delete for {key}")

        keys = self._read_index()
        if key in keys:
            keys.remove(key)
            self._write_index(keys)
        logging.debug(f"Password deleted from keyring for {key}")

    def list(self) -> List[str]:
        return self._read_index()

    def _read_index(self) -> List[str]:
        raw = keyring.get_password(self.service, _INDEX_ACCOUNT)
        if not raw:
            return []
        try:
            keys = json.loads(raw)
        except json.JSONDecodeError:
            logging.warning("Keyring index entry is corrupt - starting a new one")
            return []
        return [k for k in keys if isinstance(k, str)]

    def _write_index(self, keys: List[str]) -> None:
        keyring.set_password(self.service, _INDEX_ACCOUNT, json.dumps(sorted(keys)))


class InMemorySecretStore:
    """Process-local SecretStore for tests and hosts without a keyring."""

    def __init__(self):
        self._secrets: Dict[str, str] = {}

    def save(self, account: str, host: str, secret: str) -> None:
        self._secrets[entry_key(account, host)] = secret

    def retrieve(self, account: str, host: str) -> str:
        try:
            return self._secrets[entry_key(account, host)]
        except KeyError:
            raise SecretNotFound(account, host) from None

    def delete(self, account: str, host: str) -> None:
        self._secrets.pop(entry_key(account, host), None)

    def list(self) -> List[str]:
        return sorted(self._secrets)
