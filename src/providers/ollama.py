# src/providers/ollama.py — v2
"""Ollama Cloud usage from the ollama.com settings page."""

from __future__ import annotations

import logging

from quotabar.cache.base_cache_store import SecureStoreError
from quotabar.core.errors import (
    APIError,
    InvalidCredentialsError,
    NotLoggedInError,
    ParseFailedError,
    UsageError,
)
from quotabar.core.models import FetchContext, UsageSnapshot
from quotabar.credentials.access_policy import CredentialAccessPolicy, may_prompt_now
from quotabar.logging.context import set_candidate_context
from quotabar.parsers import ollama_html
from quotabar.parsers.http_errors import compose_api_error
from quotabar.providers.base_fetcher import BaseUsageFetcher, CookieCandidate, is_auth_failure
from quotabar.providers.retry_runner import run_candidates

logger = logging.getLogger(__name__)

COOKIE_DOMAINS = ("ollama.com", "www.ollama.com")

SESSION_COOKIE_NAMES = frozenset({
    "session",
    "ollama_session",
    "__Host-ollama_session",
    "__Secure-next-auth.session-token",
    "next-auth.session-token",
})
# Chunked next-auth tokens: <name>.0, <name>.1, ...
SESSION_COOKIE_PREFIXES = (
    "__Secure-next-auth.session-token.",
    "next-auth.session-token.",
)


def is_session_cookie(name: str) -> bool:
    return name in SESSION_COOKIE_NAMES or name.startswith(SESSION_COOKIE_PREFIXES)


def has_session_cookie(cookies: dict[str, str]) -> bool:
    return any(is_session_cookie(name) for name in cookies)


def should_retry(error: Exception) -> bool:
    """Next candidate on auth failures and on pages without usage data."""
    if is_auth_failure(error):
        return True
    return isinstance(error, ParseFailedError) and error.message == ollama_html.MISSING_USAGE_MESSAGE


class OllamaUsageFetcher(BaseUsageFetcher):
    """Scrapes Cloud Usage with a configured, cached or browser cookie."""

    provider = "ollama"

    async def fetch(self, ctx: FetchContext) -> UsageSnapshot:
        candidates = await self.cookie_candidates(self.settings.ollama_cookie_header)
        stored_error: UsageError | None = None
        try:
            if candidates:
                try:
                    return await self._run(candidates, ctx)
                except UsageError as exc:
                    if not should_retry(exc) or not self._may_import_browser(ctx):
                        raise
                    logger.info("Stored Ollama cookies unusable (%s); trying browser import", exc)
                    stored_error = exc

            # Browser import only after configured and cached cookies failed
            browser = await self._browser_candidates(ctx, candidates)
            if browser:
                return await self._run(browser, ctx)
            if stored_error is not None:
                raise stored_error
            raise NotLoggedInError(
                "No Ollama session cookie. Set OLLAMA_COOKIE_HEADER or enable browser import.",
                provider=self.provider,
            )
        except UsageError as exc:
            raise exc.with_provider(self.provider)
        finally:
            set_candidate_context(None)

    async def _run(self, candidates: list[CookieCandidate], ctx: FetchContext) -> UsageSnapshot:
        async def attempt(candidate: CookieCandidate) -> UsageSnapshot:
            set_candidate_context(candidate.label)
            try:
                snapshot = await self._fetch_with_cookie(candidate, ctx)
            except (NotLoggedInError, InvalidCredentialsError):
                await self.forget_cookie(candidate)
                raise
            if candidate.source == "browser":
                await self._remember(candidate)
            return snapshot

        def on_retry(candidate: CookieCandidate, error: Exception) -> None:
            logger.info("Ollama cookie from %s unusable: %s", candidate.label, error)

        return await run_candidates(candidates, should_retry, attempt, on_retry=on_retry)

    def _may_import_browser(self, ctx: FetchContext) -> bool:
        """Browser import decrypts cookies via the OS vault, so it follows the keychain gate."""
        if not self.settings.ollama_browser_import or self.deps.browser is None:
            return False
        policy = CredentialAccessPolicy.from_settings(self.settings)
        if not may_prompt_now(ctx.interaction, policy.prompt_policy, policy.access_enabled):
            logger.debug("Ollama browser import blocked for %s interaction", ctx.interaction)
            return False
        return True

    async def _browser_candidates(
        self, ctx: FetchContext, existing: list[CookieCandidate]
    ) -> list[CookieCandidate]:
        if not self._may_import_browser(ctx):
            return []
        seen = {c.header for c in existing}
        found: list[CookieCandidate] = []
        for domain in COOKIE_DOMAINS:
            try:
                sessions = await self.deps.browser.import_sessions(domain)
            except ImportError as exc:
                logger.warning("%s", exc)
                return found
            for session in sessions:
                if not has_session_cookie(session.cookies):
                    logger.debug("Skipping %s cookies for %s: no session cookie", session.source_label, domain)
                    continue
                header = session.header
                if header in seen:
                    continue
                seen.add(header)
                found.append(CookieCandidate(header, "browser", session.source_label))
        return found

    async def _remember(self, candidate: CookieCandidate) -> None:
        try:
            await self.deps.cookie_cache.store(self.provider, candidate.header, candidate.label)
        except SecureStoreError as exc:
            logger.warning("Could not cache Ollama cookie: %s", exc)

    async def _fetch_with_cookie(
        self, candidate: CookieCandidate, ctx: FetchContext
    ) -> UsageSnapshot:
        result = await self.deps.http.get(
            self.settings.ollama_settings_url,
            headers={
                "Cookie": candidate.header,
                "Accept": "text/html,application/xhtml+xml",
            },
        )
        if result.status in (401, 403):
            raise InvalidCredentialsError(compose_api_error(result.status, result.body))
        if not result.ok:
            raise APIError(compose_api_error(result.status, result.body), status=result.status)
        return ollama_html.parse(result.body).to_snapshot(ctx.now)
