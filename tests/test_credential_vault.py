"""Tests for the credential vault and the secure storage adapters."""

import keyring
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError

from feedcore.adapters.storage import (
    InMemorySecureStore,
    KeyringSecureStore,
    create_secure_store,
)
from feedcore.core.config import AuthSettings
from feedcore.core.errors import StorageAppError, ValidationAppError
from feedcore.schemas.user import AppUser, AuthRecord
from feedcore.services.credential_vault import CredentialVault


class MemoryKeyring(KeyringBackend):
    """Keyring backend that keeps passwords in a dict."""

    priority = 1

    def __init__(self) -> None:
        super().__init__()
        self.passwords: dict[tuple[str, str], str] = {}

    def get_password(self, service, username):
        return self.passwords.get((service, username))

    def set_password(self, service, username, password):
        self.passwords[(service, username)] = password

    def delete_password(self, service, username):
        if (service, username) not in self.passwords:
            raise PasswordDeleteError("not found")
        del self.passwords[(service, username)]


class LockedKeyring(MemoryKeyring):
    def get_password(self, service, username):
        raise KeyringError("keychain locked")

    def set_password(self, service, username, password):
        raise KeyringError("keychain locked")


@pytest.fixture
def memory_keyring():
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


@pytest.mark.asyncio
async def test_empty_vault_has_no_credential(vault) -> None:
    assert await vault.load() is None
    assert await vault.get_credential() is None
    assert await vault.has_credential() is False


@pytest.mark.asyncio
async def test_record_survives_a_new_vault_instance(store, vault, credential, stored_user) -> None:
    await vault.save(AuthRecord(credential=credential, user=stored_user))

    reopened = CredentialVault(store, "auth-token-v1")

    assert await reopened.get_credential() == credential
    assert (await reopened.load()).user == stored_user
    assert "auth-token-v1" in store


@pytest.mark.asyncio
async def test_corrupt_record_raises_storage_error(store, vault) -> None:
    await store.set_item("auth-token-v1", '{"credential": {}}')

    with pytest.raises(StorageAppError) as exc_info:
        await vault.load()

    assert exc_info.value.code == "secure_storage_corrupt"


@pytest.mark.asyncio
async def test_save_user_keeps_credential(vault, stored_record) -> None:
    updated = await vault.save_user(None)

    assert updated.user is None
    assert (await vault.load()).credential == stored_record.credential


@pytest.mark.asyncio
async def test_save_user_without_record_fails(vault) -> None:
    with pytest.raises(StorageAppError) as exc_info:
        await vault.save_user(AppUser(id="1", username="bob", display_name="Bob"))

    assert exc_info.value.code == "secure_storage_no_credential"


@pytest.mark.asyncio
async def test_clear_is_idempotent(vault, stored_record) -> None:
    await vault.clear()
    await vault.clear()

    assert await vault.load() is None


@pytest.mark.asyncio
async def test_keyring_store_round_trip(memory_keyring) -> None:
    store = KeyringSecureStore(service_name="feedcore-test")

    await store.set_item("auth-token-v1", "payload")
    assert await store.get_item("auth-token-v1") == "payload"
    assert memory_keyring.passwords[("feedcore-test", "auth-token-v1")] == "payload"

    await store.delete_item("auth-token-v1")
    # Deleting a missing entry is not an error
    await store.delete_item("auth-token-v1")
    assert await store.get_item("auth-token-v1") is None


@pytest.mark.asyncio
async def test_keyring_failures_become_storage_errors() -> None:
    previous = keyring.get_keyring()
    keyring.set_keyring(LockedKeyring())
    try:
        store = KeyringSecureStore(service_name="feedcore-test")

        with pytest.raises(StorageAppError) as read_error:
            await store.get_item("auth-token-v1")
        with pytest.raises(StorageAppError) as write_error:
            await store.set_item("auth-token-v1", "x")
    finally:
        keyring.set_keyring(previous)

    assert read_error.value.code == "secure_storage_read_failed"
    assert write_error.value.code == "secure_storage_write_failed"


def test_factory_builds_configured_backend() -> None:
    assert isinstance(create_secure_store(AuthSettings(storage_backend="memory")), InMemorySecureStore)

    store = create_secure_store(AuthSettings(storage_backend="keyring", storage_service="svc"))
    assert isinstance(store, KeyringSecureStore)
    assert store.service_name == "svc"


def test_factory_rejects_unknown_backend() -> None:
    with pytest.raises(ValidationAppError) as exc_info:
        create_secure_store(AuthSettings.model_construct(storage_backend="vault"))

    assert exc_info.value.code == "storage_unknown_backend"
