"""OS keychain adapter built on the keyring library."""

import asyncio
import logging

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from feedcore.adapters.storage.base import AbstractSecureStore
from feedcore.core.errors import StorageAppError

logger = logging.getLogger(__name__)


class KeyringSecureStore(AbstractSecureStore):
    """Store secrets in the platform keychain (Keychain, Secret Service, WinVault).

    keyring calls are blocking, so each one runs in a worker thread to keep
    the event loop responsive.
    """

    def __init__(self, service_name: str) -> None:
        """Initialize the keyring adapter.

        Args:
            service_name: Namespace for every entry written by this store.
        """
        self.service_name = service_name

    async def get_item(self, key: str) -> str | None:
        try:
            return await asyncio.to_thread(keyring.get_password, self.service_name, key)
        except KeyringError as exc:
            raise StorageAppError(
                code="secure_storage_read_failed",
                message=f"Keyring read failed: {exc}",
                details={"backend": "keyring", "storage_key": key},
            ) from exc

    async def set_item(self, key: str, value: str) -> None:
        try:
            await asyncio.to_thread(keyring.set_password, self.service_name, key, value)
        except KeyringError as exc:
            raise StorageAppError(
                code="secure_storage_write_failed",
                message=f"Keyring write failed: {exc}",
                details={"backend": "keyring", "storage_key": key},
            ) from exc

    async def delete_item(self, key: str) -> None:
        try:
            await asyncio.to_thread(keyring.delete_password, self.service_name, key)
        except PasswordDeleteError:
            logger.debug("storage.delete_missing", extra={"storage_key": key})
        except KeyringError as exc:
            raise StorageAppError(
                code="secure_storage_delete_failed",
                message=f"Keyring delete failed: {exc}",
                details={"backend": "keyring", "storage_key": key},
            ) from exc
