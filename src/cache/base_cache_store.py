# src/cache/base_cache_store.py — v2
"""Abstract secure store interface.

Backends only move opaque bytes; encoding, decoding, tri-state results and
per-key write serialization live here so every backend behaves the same.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from quotabar.cache.models import CacheKey, CacheLoadResult
from quotabar.core.errors import UsageError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class SecureStoreError(UsageError):
    """Backend failed to read, write or delete an entry."""


class BaseSecureStore(ABC):
    """Unified interface for secure key/value storage backends."""

    def __init__(self) -> None:
        self._locks: dict[CacheKey, asyncio.Lock] = {}

    # --- public API ---

    async def store(self, key: CacheKey, entry: BaseModel) -> None:
        """Persist ``entry`` under ``key``, replacing any previous value.

        Raises:
            SecureStoreError: If the backend rejects the write.
        """
        data = entry.model_dump_json(by_alias=True).encode("utf-8")
        async with self._lock_for(key):
            await self._write(key, data)
        logger.debug("Stored secure entry %s (%d bytes)", key.account, len(data))

    async def load(self, key: CacheKey, model: type[M]) -> CacheLoadResult[M]:
        """Load and decode the entry under ``key``.

        Never raises for decode or backend failures: those become ``invalid``.
        """
        try:
            data = await self._read(key)
        except SecureStoreError as exc:
            logger.error("Secure store read failed (%s): %s", key.account, exc)
            return CacheLoadResult.invalid(f"read failed: {exc}")

        if data is None:
            return CacheLoadResult.missing()
        if not data:
            logger.error("Secure store item was empty (%s)", key.account)
            return CacheLoadResult.invalid("empty payload")
        try:
            return CacheLoadResult.found(model.model_validate_json(data))
        except ValidationError as exc:
            logger.error(
                "Failed to decode secure store entry (%s): %d errors",
                key.account, exc.error_count(),
            )
            return CacheLoadResult.invalid("undecodable payload")

    async def clear(self, key: CacheKey) -> None:
        """Remove the entry under ``key``; silently succeeds if absent."""
        async with self._lock_for(key):
            await self._delete(key)

    # --- backend hooks ---

    @abstractmethod
    async def _read(self, key: CacheKey) -> bytes | None:
        """Return raw bytes, or None when no entry exists."""

    @abstractmethod
    async def _write(self, key: CacheKey, data: bytes) -> None:
        """Atomically replace the raw bytes for ``key``."""

    @abstractmethod
    async def _delete(self, key: CacheKey) -> None:
        """Delete ``key`` if present."""

    def _lock_for(self, key: CacheKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock
