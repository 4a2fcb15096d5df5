"""Process-local secure store for tests and ephemeral sessions."""

from feedcore.adapters.storage.base import AbstractSecureStore


class InMemorySecureStore(AbstractSecureStore):
    """Dictionary-backed store. Nothing survives a restart."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._items: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def delete_item(self, key: str) -> None:
        self._items.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._items
