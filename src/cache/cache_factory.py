# src/cache/cache_factory.py — v3
"""Factory for secure store instantiation."""

from __future__ import annotations

import logging

from quotabar.cache.base_cache_store import BaseSecureStore
from quotabar.config.settings import Settings
from quotabar.credentials.keychain import BaseKeychain

logger = logging.getLogger(__name__)


def create_secure_store(
    settings: Settings | None = None,
    keychain: BaseKeychain | None = None,
) -> BaseSecureStore:
    """Instantiate the configured secure store backend.

    Args:
        settings: Application settings. Defaults to an in-memory store.
        keychain: Keychain primitive override (tests inject InMemoryKeychain).

    Returns:
        Configured BaseSecureStore implementation.
    """
    backend = "memory" if settings is None else settings.secure_store_backend

    if backend == "keychain" and settings is not None and settings.keychain_access_disabled:
        logger.warning(
            "Keychain access is disabled; using encrypted_file secure store instead"
        )
        backend = "encrypted_file"

    if backend == "memory":
        from quotabar.cache.memory_store import MemorySecureStore
        return MemorySecureStore()

    assert settings is not None

    if backend == "keychain":
        from quotabar.cache.keychain_store import KeychainSecureStore
        from quotabar.credentials.keychain import SecurityCLIKeychain
        return KeychainSecureStore(
            keychain=keychain or SecurityCLIKeychain(
                binary=settings.security_binary,
                timeout=settings.keychain_read_timeout_s,
            ),
            service=settings.secure_store_service,
        )

    if backend == "encrypted_file":
        from quotabar.cache.encrypted_file_store import EncryptedFileSecureStore
        return EncryptedFileSecureStore.from_key_file(
            root=settings.secure_store_root,
            key_file=settings.secure_store_key_file,
        )

    raise ValueError(f"Unsupported secure store backend: {backend!r}")
