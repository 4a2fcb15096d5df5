"""Access to the single secure-storage record holding the credential and user.

The record is stored as JSON under one fixed key. It is the only state that
survives a restart; everything else is rebuilt from it and confirmed with the
server.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from feedcore.adapters.storage.base import AbstractSecureStore
from feedcore.core.errors import StorageAppError
from feedcore.schemas.user import AppUser, AuthRecord, StoredCredential

logger = logging.getLogger(__name__)


class CredentialVault:
    """Typed wrapper around the secure store.

    Attributes:
        store: Secure storage backend.
        storage_key: Fixed identifier of the record.
    """

    def __init__(self, store: AbstractSecureStore, storage_key: str = "auth-token-v1") -> None:
        self.store = store
        self.storage_key = storage_key

    async def load(self) -> AuthRecord | None:
        """Read and parse the stored record.

        Returns:
            The record, or None when nothing is stored.

        Raises:
            StorageAppError: If the backend fails or the stored data is corrupt.
        """
        raw = await self.store.get_item(self.storage_key)
        if not raw:
            return None

        try:
            return AuthRecord.model_validate_json(raw)
        except ValidationError as exc:
            logger.error(
                "vault.corrupt_record",
                extra={"storage_key": self.storage_key, "error_count": exc.error_count()},
            )
            raise StorageAppError(
                code="secure_storage_corrupt",
                message="Stored credential record could not be parsed",
                details={"storage_key": self.storage_key},
            ) from exc

    async def save(self, record: AuthRecord) -> None:
        await self.store.set_item(self.storage_key, record.model_dump_json())
        logger.debug(
            "vault.saved",
            extra={"storage_key": self.storage_key, "has_user": record.user is not None},
        )

    async def save_user(self, user: AppUser | None) -> AuthRecord:
        """Replace the user snapshot while keeping the stored credential.

        Raises:
            StorageAppError: If there is no credential to attach the user to,
                or the backend fails.
        """
        record = await self.load()
        if record is None:
            raise StorageAppError(
                code="secure_storage_no_credential",
                message="No stored credential to attach the user snapshot to",
                details={"storage_key": self.storage_key},
            )
        updated = record.model_copy(update={"user": user})
        await self.save(updated)
        return updated

    async def clear(self) -> None:
        await self.store.delete_item(self.storage_key)
        logger.info("vault.cleared", extra={"storage_key": self.storage_key})

    async def get_credential(self) -> StoredCredential | None:
        record = await self.load()
        return record.credential if record else None

    async def has_credential(self) -> bool:
        return await self.get_credential() is not None
