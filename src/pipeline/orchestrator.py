# src/pipeline/orchestrator.py — v2
"""Refresh orchestrator: one concurrent fetch task per enabled provider.

Each task runs under its own logging context and its own deadline; a failing
provider is reported in its result and never affects the others.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from quotabar.cache.cookie_header_cache import CookieHeaderCache
from quotabar.core.errors import UsageError
from quotabar.core.models import FetchContext, InteractionContext, UsageSnapshot
from quotabar.logging.context import set_fetch_context
from quotabar.providers.base_fetcher import BaseUsageFetcher, FetcherDeps
from quotabar.providers.fetcher_factory import create_fetcher

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from quotabar.config.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderRefreshResult:
    """Outcome for one provider: a snapshot or a user-facing error message."""

    provider: str
    snapshot: UsageSnapshot | None = None
    error_message: str | None = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.snapshot is not None


def build_deps(settings: Settings) -> FetcherDeps:
    """Production collaborators for every fetcher."""
    from quotabar.cache.cache_factory import create_secure_store
    from quotabar.credentials.keychain import SecurityCLIKeychain
    from quotabar.providers.browser_cookies import BrowserCookieImporter
    from quotabar.runner.http_client import HttpRunner
    from quotabar.runner.subprocess_runner import SubprocessRunner

    subprocess_runner = SubprocessRunner()
    keychain = SecurityCLIKeychain(
        runner=subprocess_runner,
        binary=settings.security_binary,
        timeout=settings.keychain_read_timeout_s,
    )
    secure_store = create_secure_store(settings, keychain=keychain)
    return FetcherDeps(
        http=HttpRunner(timeout=settings.http_timeout_s),
        secure_store=secure_store,
        cookie_cache=CookieHeaderCache(secure_store, legacy_dir=settings.legacy_cookie_dir),
        keychain=keychain,
        subprocess=subprocess_runner,
        browser=BrowserCookieImporter(runner=subprocess_runner) if settings.ollama_browser_import else None,
    )


class UsageOrchestrator:
    """Runs provider fetchers concurrently and collects their results.

    Args:
        settings: Application settings.
        deps: Shared collaborators. Built from settings when omitted.
        fetchers: Explicit provider → fetcher map (tests).
    """

    def __init__(
        self,
        settings: Settings,
        deps: FetcherDeps | None = None,
        fetchers: dict[str, BaseUsageFetcher] | None = None,
    ) -> None:
        self._settings = settings
        self._deps = deps or build_deps(settings)
        self._fetchers: dict[str, BaseUsageFetcher] = dict(fetchers or {})

    @property
    def deps(self) -> FetcherDeps:
        return self._deps

    def fetcher(self, provider: str) -> BaseUsageFetcher:
        if provider not in self._fetchers:
            self._fetchers[provider] = create_fetcher(provider, self._settings, self._deps)
        return self._fetchers[provider]

    async def refresh(
        self,
        interaction: InteractionContext = "background",
        providers: Iterable[str] | None = None,
    ) -> dict[str, ProviderRefreshResult]:
        """Fetch every requested (default: enabled) provider once."""
        selected = list(providers) if providers is not None else self._settings.enabled_providers_list
        ctx = FetchContext(interaction=interaction)
        results = await asyncio.gather(*(self._refresh_one(p, ctx) for p in selected))
        return {r.provider: r for r in results}

    async def _refresh_one(self, provider: str, ctx: FetchContext) -> ProviderRefreshResult:
        # Runs as its own task under gather, so context vars stay per provider
        set_fetch_context(provider, ctx.interaction)
        started = time.monotonic()

        def elapsed() -> float:
            return (time.monotonic() - started) * 1000

        timeout = self._settings.provider_timeout_s
        try:
            fetcher = self.fetcher(provider)
            snapshot = await asyncio.wait_for(fetcher.fetch(ctx), timeout=timeout)
        except asyncio.TimeoutError:
            message = f"{provider} refresh timed out after {timeout:g}s"
            logger.warning(message)
            return ProviderRefreshResult(provider, error_message=message, duration_ms=elapsed())
        except UsageError as exc:
            logger.warning("Refresh failed: %s", exc)
            return ProviderRefreshResult(provider, error_message=str(exc), duration_ms=elapsed())
        except Exception as exc:
            logger.exception("Unexpected failure refreshing %s", provider)
            return ProviderRefreshResult(
                provider, error_message=f"Unexpected error: {type(exc).__name__}", duration_ms=elapsed()
            )

        logger.info("Refreshed in %.0fms", elapsed())
        return ProviderRefreshResult(provider, snapshot=snapshot, duration_ms=elapsed())

    async def run_forever(
        self,
        interval: float | None = None,
        on_results: Callable[[dict[str, ProviderRefreshResult]], Awaitable[None] | None] | None = None,
    ) -> None:
        """Poll in the background context until cancelled."""
        period = interval if interval is not None else self._settings.refresh_interval_s
        while True:
            results = await self.refresh("background")
            if on_results is not None:
                maybe = on_results(results)
                if asyncio.iscoroutine(maybe):
                    await maybe
            await asyncio.sleep(period)

    async def aclose(self) -> None:
        await self._deps.http.aclose()
