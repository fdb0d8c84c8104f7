# src/cache/keychain_store.py — v1
"""Secure store backed by keychain generic-password items.

One item per key: service = configured service name, account =
``<category>.<identifier>``.
"""

from __future__ import annotations

import logging

from quotabar.cache.base_cache_store import BaseSecureStore, SecureStoreError
from quotabar.cache.models import CacheKey
from quotabar.core.errors import UsageError
from quotabar.credentials.keychain import BaseKeychain

logger = logging.getLogger(__name__)


class KeychainSecureStore(BaseSecureStore):
    """Keychain-backed secure store.

    Args:
        keychain: Keychain primitive (``SecurityCLIKeychain`` in production).
        service: Generic-password service name shared by all entries.
    """

    def __init__(self, keychain: BaseKeychain, service: str = "com.quotabar.cache") -> None:
        super().__init__()
        self._keychain = keychain
        self._service = service

    async def _read(self, key: CacheKey) -> bytes | None:
        try:
            secret = await self._keychain.read_generic_password(self._service, key.account)
        except UsageError as exc:
            raise SecureStoreError(str(exc)) from exc
        return None if secret is None else secret.encode("utf-8")

    async def _write(self, key: CacheKey, data: bytes) -> None:
        try:
            await self._keychain.add_generic_password(
                self._service, key.account, data.decode("utf-8"), label=f"{self._service} ({key.account})"
            )
        except UsageError as exc:
            raise SecureStoreError(f"Keychain write failed for {key.account}: {exc}") from exc

    async def _delete(self, key: CacheKey) -> None:
        try:
            await self._keychain.delete_generic_password(self._service, key.account)
        except UsageError as exc:
            raise SecureStoreError(f"Keychain delete failed for {key.account}: {exc}") from exc
