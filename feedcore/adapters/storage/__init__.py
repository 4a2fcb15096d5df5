"""Secure storage adapter layer - abstracts over platform keychains."""

from feedcore.adapters.storage.base import AbstractSecureStore
from feedcore.adapters.storage.factory import create_secure_store
from feedcore.adapters.storage.in_memory import InMemorySecureStore
from feedcore.adapters.storage.keyring_store import KeyringSecureStore

__all__ = [
    "AbstractSecureStore",
    "InMemorySecureStore",
    "KeyringSecureStore",
    "create_secure_store",
]
