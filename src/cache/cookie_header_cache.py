# src/cache/cookie_header_cache.py — v1
"""Per-provider cookie header cache on top of the secure store.

Older releases kept cookie headers in plaintext
``<legacy_dir>/<provider>-cookie.json`` files. ``load`` migrates such a file
into the secure store and deletes it; repeated loads are harmless.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from quotabar.cache.base_cache_store import BaseSecureStore, SecureStoreError
from quotabar.cache.models import CacheKey, CookieHeaderCacheEntry

logger = logging.getLogger(__name__)


class CookieHeaderCache:
    """Load / store / clear the cookie header captured for a provider.

    Args:
        store: Secure store holding ``cookie.<provider>`` entries.
        legacy_dir: Directory of pre-secure-store ``*-cookie.json`` files
            (None disables migration).
    """

    def __init__(self, store: BaseSecureStore, legacy_dir: Path | None = None) -> None:
        self._store = store
        self._legacy_dir = Path(legacy_dir).expanduser() if legacy_dir else None

    async def load(self, provider: str) -> CookieHeaderCacheEntry | None:
        key = CacheKey.cookie(provider)
        result = await self._store.load(key, CookieHeaderCacheEntry)
        if result.is_found:
            return result.value
        if result.is_invalid:
            logger.warning("Ignoring unreadable cookie cache for %s: %s", provider, result.reason)

        legacy = self._read_legacy(provider)
        if legacy is None:
            return None

        try:
            await self._store.store(key, legacy)
        except SecureStoreError as exc:
            # Keep the legacy file so the next load can retry the migration
            logger.error("Cookie cache migration failed for %s: %s", provider, exc)
            return legacy

        self._remove_legacy(provider)
        logger.info("Migrated legacy cookie cache for %s", provider)
        return legacy

    async def store(
        self,
        provider: str,
        cookie_header: str,
        source_label: str,
        now: datetime | None = None,
    ) -> None:
        """Persist a cookie header; an empty header clears the entry."""
        header = cookie_header.strip()
        if not header:
            await self.clear(provider)
            return
        entry = CookieHeaderCacheEntry(
            cookie_header=header,
            stored_at=now or datetime.now(timezone.utc),
            source_label=source_label,
        )
        await self._store.store(CacheKey.cookie(provider), entry)

    async def clear(self, provider: str) -> None:
        await self._store.clear(CacheKey.cookie(provider))
        self._remove_legacy(provider)

    # --- legacy files ---

    def legacy_path(self, provider: str) -> Path | None:
        if self._legacy_dir is None:
            return None
        return self._legacy_dir / f"{provider}-cookie.json"

    def _read_legacy(self, provider: str) -> CookieHeaderCacheEntry | None:
        path = self.legacy_path(provider)
        if path is None or not path.exists():
            return None
        try:
            entry = CookieHeaderCacheEntry.model_validate(
                json.loads(path.read_text(encoding="utf-8"))
            )
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Unreadable legacy cookie file %s: %s", path.name, type(exc).__name__)
            return None
        if not entry.cookie_header.strip():
            return None
        return entry

    def _remove_legacy(self, provider: str) -> None:
        path = self.legacy_path(provider)
        if path is None:
            return
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not delete legacy cookie file %s: %s", path.name, exc.strerror)
