# src/cache/memory_store.py — v1
"""In-memory secure store (tests, diagnostics, SECURE_STORE_BACKEND=memory)."""

from __future__ import annotations

from quotabar.cache.base_cache_store import BaseSecureStore
from quotabar.cache.models import CacheKey


class MemorySecureStore(BaseSecureStore):
    """Keeps raw bytes in a dict; shares the JSON codec with real backends."""

    def __init__(self) -> None:
        super().__init__()
        self._items: dict[CacheKey, bytes] = {}

    async def _read(self, key: CacheKey) -> bytes | None:
        return self._items.get(key)

    async def _write(self, key: CacheKey, data: bytes) -> None:
        self._items[key] = data

    async def _delete(self, key: CacheKey) -> None:
        self._items.pop(key, None)

    def put_raw(self, key: CacheKey, data: bytes) -> None:
        """Seed raw bytes, bypassing encoding (used to simulate corrupt items)."""
        self._items[key] = data

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)
