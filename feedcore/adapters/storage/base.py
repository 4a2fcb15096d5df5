from abc import ABC, abstractmethod


class AbstractSecureStore(ABC):
	"""Interface for platform secure storage holding string secrets."""

	@abstractmethod
	async def get_item(self, key: str) -> str | None:
		"""Read a stored value.

		Args:
			key: Storage identifier.

		Returns:
			str | None: The stored value, or None when nothing is stored.

		Raises:
			StorageAppError: If the backend cannot be read.
		"""
		...

	@abstractmethod
	async def set_item(self, key: str, value: str) -> None:
		"""Store a value, replacing any previous one.

		Raises:
			StorageAppError: If the backend cannot be written.
		"""
		...

	@abstractmethod
	async def delete_item(self, key: str) -> None:
		"""Delete a value. Deleting a missing key is not an error.

		Raises:
			StorageAppError: If the backend cannot be written.
		"""
		...
