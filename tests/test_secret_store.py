import json

import keyring
import keyring.errors
import pytest

from share_dumper.core.exceptions import SecretNotFound
from share_dumper.services.secrets.secret_store import (
    _INDEX_ACCOUNT,
    KEYRING_SERVICE,
    InMemorySecretStore,
    KeyringSecretStore,
)


class FakeKeyring:
    """Dict-backed replacement for the keyring module functions."""

    def __init__(self):
        self.entries = {}

    def set_password(self, service, username, password):
        self.entries[(service, username)] = password

    def get_password(self, service, username):
        return self.entries.get((service, username))

    def delete_password(self, service, username):
        if (service, username) not in self.entries:
            raise keyring.errors.PasswordDeleteError("not found")
        del self.entries[(service, username)]


@pytest.fixture
def fake_keyring(monkeypatch):
    fake = FakeKeyring()
    monkeypatch.setattr(keyring, "set_password", fake.set_password)
    monkeypatch.setattr(keyring, "get_password", fake.get_password)
    monkeypatch.setattr(keyring, "delete_password", fake.delete_password)
    return fake


@pytest.fixture(params=["keyring", "memory"])
def store(request, fake_keyring):
    if request.param == "keyring":
        return KeyringSecretStore()
    return InMemorySecretStore()


def test_save_retrieve_delete(store):
    store.save("alice", "192.168.1.20", "s3cret")
    store.save("bob", "nas.local", "hunter2")

    assert store.retrieve("alice", "192.168.1.20") == "s3cret"
    assert store.list() == ["alice@192.168.1.20", "bob@nas.local"]

    store.delete("alice", "192.168.1.20")

    with pytest.raises(SecretNotFound):
        store.retrieve("alice", "192.168.1.20")
    assert store.list() == ["bob@nas.local"]


def test_overwrite_keeps_one_entry(store):
    store.save("alice", "nas", "old")
    store.save("alice", "nas", "new")

    assert store.retrieve("alice", "nas") == "new"
    assert store.list() == ["alice@nas"]


def test_deleting_missing_entry_is_quiet(store):
    store.delete("nobody", "nas")
    assert store.list() == []


def test_keyring_entries_use_service_and_index(fake_keyring):
    store = KeyringSecretStore()
    store.save("alice", "nas", "s3cret")

    assert fake_keyring.entries[(KEYRING_SERVICE, "alice@nas")] == "s3cret"
    assert json.loads(fake_keyring.entries[(KEYRING_SERVICE, _INDEX_ACCOUNT)]) == ["alice@nas"]


def test_corrupt_index_is_ignored(fake_keyring):
    fake_keyring.entries[(KEYRING_SERVICE, _INDEX_ACCOUNT)] = "{not json"

    assert KeyringSecretStore().list() == []
