"""Factory pattern for creating secure store instances."""

from feedcore.adapters.storage.base import AbstractSecureStore
from feedcore.adapters.storage.in_memory import InMemorySecureStore
from feedcore.adapters.storage.keyring_store import KeyringSecureStore
from feedcore.core.config import AuthSettings, settings
from feedcore.core.errors import ValidationAppError


def create_secure_store(auth_settings: AuthSettings | None = None) -> AbstractSecureStore:
    """Factory function to instantiate the configured secure store.

    Args:
        auth_settings: Optional auth settings; defaults to global settings.

    Returns:
        AbstractSecureStore: Configured storage backend.

    Raises:
        ValidationAppError: If the backend name is unknown.
    """
    cfg = auth_settings or settings.auth
    backend = cfg.storage_backend.lower()

    if backend == "keyring":
        return KeyringSecureStore(service_name=cfg.storage_service)

    if backend == "memory":
        return InMemorySecureStore()

    raise ValidationAppError(
        code="storage_unknown_backend",
        message=(
            f"Unknown secure storage backend: '{backend}'. Supported backends: keyring, memory"
        ),
    )
