# src/providers/base_fetcher.py — v1
"""Abstract usage fetcher interface and the shared dependencies it receives."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal

from quotabar.cache.base_cache_store import BaseSecureStore, SecureStoreError
from quotabar.cache.cookie_header_cache import CookieHeaderCache
from quotabar.config.settings import Settings
from quotabar.core.errors import InvalidCredentialsError, NotLoggedInError
from quotabar.core.models import FetchContext, UsageSnapshot
from quotabar.credentials.keychain import BaseKeychain
from quotabar.providers.browser_cookies import BrowserCookieImporter
from quotabar.runner.http_client import HttpRunner
from quotabar.runner.subprocess_runner import SubprocessRunner

logger = logging.getLogger(__name__)

CookieSource = Literal["configured", "cached", "browser"]


@dataclass
class FetcherDeps:
    """Collaborators shared by every fetcher of one orchestrator."""

    http: HttpRunner
    secure_store: BaseSecureStore
    cookie_cache: CookieHeaderCache
    keychain: BaseKeychain
    subprocess: SubprocessRunner
    browser: BrowserCookieImporter | None = None


@dataclass(frozen=True)
class CookieCandidate:
    """One cookie header to try, and where it came from."""

    header: str
    source: CookieSource
    label: str

    def __repr__(self) -> str:
        # Never expose the header itself
        return f"CookieCandidate(source={self.source!r}, label={self.label!r})"


def is_auth_failure(error: Exception) -> bool:
    """Retry predicate for cookie-based providers."""
    return isinstance(error, (NotLoggedInError, InvalidCredentialsError))


class BaseUsageFetcher(ABC):
    """Unified interface for provider usage fetchers."""

    provider: str

    def __init__(self, settings: Settings, deps: FetcherDeps) -> None:
        self.settings = settings
        self.deps = deps

    @abstractmethod
    async def fetch(self, ctx: FetchContext) -> UsageSnapshot:
        """Fetch one usage snapshot.

        Raises:
            UsageError: Tagged with this fetcher's provider.
        """

    # --- cookie helpers ---

    async def cookie_candidates(self, configured_header: str) -> list[CookieCandidate]:
        """Configured header first, then the cached one (deduplicated)."""
        candidates: list[CookieCandidate] = []
        if configured_header.strip():
            candidates.append(
                CookieCandidate(configured_header.strip(), "configured", "Settings")
            )
        cached = await self.deps.cookie_cache.load(self.provider)
        if cached is not None and all(c.header != cached.cookie_header for c in candidates):
            candidates.append(CookieCandidate(cached.cookie_header, "cached", cached.source_label))
        return candidates

    async def forget_cookie(self, candidate: CookieCandidate) -> None:
        """Drop a cached cookie after the provider rejected it."""
        if candidate.source != "cached":
            return
        logger.info("Clearing rejected %s cookie (%s)", self.provider, candidate.label)
        try:
            await self.deps.cookie_cache.clear(self.provider)
        except SecureStoreError as exc:
            logger.warning("Could not clear %s cookie cache: %s", self.provider, exc)
