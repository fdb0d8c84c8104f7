# tests/unit/providers/test_unit_ollama_provider.py — v2
"""Tests for providers/ollama.py — cookie candidates, browser import, retries."""

from __future__ import annotations

import httpx
import pytest

from quotabar.core.errors import InvalidCredentialsError, NotLoggedInError, ParseFailedError
from quotabar.providers.browser_cookies import BrowserCookieImporter, BrowserCookieSession
from quotabar.providers.ollama import OllamaUsageFetcher, is_session_cookie, should_retry

USAGE_HTML = """
<div>
  <span>Session usage</span><span>3% used</span>
  <span>Weekly usage</span><span>10% used</span>
</div>
"""
NO_USAGE_HTML = "<html><body>No usage here.</body></html>"


class _FakeImporter(BrowserCookieImporter):
    def __init__(self, sessions_by_domain=None, error: Exception | None = None) -> None:
        super().__init__()
        self.sessions_by_domain = sessions_by_domain or {}
        self.error = error
        self.domains: list[str] = []

    async def import_sessions(self, domain):
        self.domains.append(domain)
        if self.error is not None:
            raise self.error
        return self.sessions_by_domain.get(domain, [])


def _fetcher(settings, make_deps, handler, browser=None, **overrides) -> OllamaUsageFetcher:
    return OllamaUsageFetcher(settings.model_copy(update=overrides), make_deps(handler, browser=browser))


class TestSessionCookieNames:
    @pytest.mark.parametrize(
        "name",
        [
            "session",
            "ollama_session",
            "__Host-ollama_session",
            "__Secure-next-auth.session-token",
            "next-auth.session-token",
            "__Secure-next-auth.session-token.0",
            "next-auth.session-token.1",
        ],
    )
    def test_recognized(self, name):
        assert is_session_cookie(name)

    @pytest.mark.parametrize("name", ["_ga", "csrf", "next-auth.csrf-token"])
    def test_ignored(self, name):
        assert not is_session_cookie(name)


class TestShouldRetry:
    def test_missing_usage_retries(self):
        assert should_retry(ParseFailedError("Missing Ollama usage data."))

    def test_other_parse_failure_stops(self):
        assert not should_retry(ParseFailedError("something else"))

    def test_not_logged_in_retries(self):
        assert should_retry(NotLoggedInError("x"))


class TestOllamaFetcher:
    @pytest.mark.asyncio
    async def test_configured_cookie(self, settings, make_deps, background_ctx):
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["cookie"])
            return httpx.Response(200, text=USAGE_HTML)

        fetcher = _fetcher(settings, make_deps, handler, ollama_cookie_header="session=abc")
        snapshot = await fetcher.fetch(background_ctx)
        assert seen == ["session=abc"]
        assert snapshot.primary.used_percent == 3
        assert snapshot.secondary.used_percent == 10

    @pytest.mark.asyncio
    async def test_no_candidates(self, settings, make_deps, background_ctx):
        fetcher = _fetcher(settings, make_deps, lambda r: httpx.Response(200))
        with pytest.raises(NotLoggedInError) as info:
            await fetcher.fetch(background_ctx)
        assert info.value.provider == "ollama"

    @pytest.mark.asyncio
    async def test_missing_usage_tries_next_candidate(self, settings, make_deps, cookie_cache, background_ctx):
        await cookie_cache.store("ollama", "session=good", "Arc")

        def handler(request: httpx.Request) -> httpx.Response:
            body = USAGE_HTML if request.headers["cookie"] == "session=good" else NO_USAGE_HTML
            return httpx.Response(200, text=body)

        fetcher = _fetcher(settings, make_deps, handler, ollama_cookie_header="session=stale")
        snapshot = await fetcher.fetch(background_ctx)
        assert snapshot.primary.used_percent == 3

    @pytest.mark.asyncio
    async def test_missing_usage_surfaces_parse_failure(self, settings, make_deps, background_ctx):
        fetcher = _fetcher(
            settings, make_deps, lambda r: httpx.Response(200, text=NO_USAGE_HTML), ollama_cookie_header="session=x"
        )
        with pytest.raises(ParseFailedError) as info:
            await fetcher.fetch(background_ctx)
        assert str(info.value) == "Missing Ollama usage data."

    @pytest.mark.asyncio
    async def test_browser_cookie_used_and_cached(self, settings, make_deps, cookie_cache, foreground_ctx):
        importer = _FakeImporter(
            {
                "ollama.com": [
                    BrowserCookieSession("Chrome", {"_ga": "1"}),
                    BrowserCookieSession("Arc", {"__Secure-next-auth.session-token.0": "part0", "_ga": "2"}),
                ]
            }
        )
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["cookie"])
            return httpx.Response(200, text=USAGE_HTML)

        fetcher = _fetcher(settings, make_deps, handler, browser=importer, ollama_browser_import=True)
        await fetcher.fetch(foreground_ctx)

        assert seen == ["__Secure-next-auth.session-token.0=part0; _ga=2"]
        assert importer.domains == ["ollama.com", "www.ollama.com"]
        cached = await cookie_cache.load("ollama")
        assert cached.cookie_header == seen[0]
        assert cached.source_label == "Arc"

    @pytest.mark.asyncio
    async def test_browser_import_disabled(self, settings, make_deps, background_ctx):
        importer = _FakeImporter({"ollama.com": [BrowserCookieSession("Arc", {"session": "x"})]})
        fetcher = _fetcher(settings, make_deps, lambda r: httpx.Response(200, text=USAGE_HTML), browser=importer)
        with pytest.raises(NotLoggedInError):
            await fetcher.fetch(background_ctx)
        assert importer.domains == []

    @pytest.mark.asyncio
    async def test_browser_library_missing(self, settings, make_deps, foreground_ctx):
        importer = _FakeImporter(error=ImportError("browser-cookie3 required"))
        fetcher = _fetcher(
            settings, make_deps, lambda r: httpx.Response(200, text=USAGE_HTML),
            browser=importer, ollama_browser_import=True,
        )
        with pytest.raises(NotLoggedInError):
            await fetcher.fetch(foreground_ctx)
        assert importer.domains == ["ollama.com"]

    @pytest.mark.asyncio
    async def test_rejected_cached_cookie_cleared(self, settings, make_deps, cookie_cache, background_ctx):
        await cookie_cache.store("ollama", "session=old", "Arc")
        fetcher = _fetcher(settings, make_deps, lambda r: httpx.Response(401))
        with pytest.raises(InvalidCredentialsError):
            await fetcher.fetch(background_ctx)
        assert await cookie_cache.load("ollama") is None


class TestBrowserImportGate:
    """Browser import reads the OS vault, so it follows the keychain gate."""

    @staticmethod
    def _importer() -> _FakeImporter:
        return _FakeImporter({"ollama.com": [BrowserCookieSession("Arc", {"session": "browser"})]})

    @staticmethod
    def _handler(request: httpx.Request) -> httpx.Response:
        if request.headers["cookie"] == "session=browser":
            return httpx.Response(200, text=USAGE_HTML)
        return httpx.Response(401)

    @pytest.mark.asyncio
    async def test_access_disabled_never_imports(self, settings, make_deps, foreground_ctx):
        importer = self._importer()
        fetcher = _fetcher(
            settings, make_deps, self._handler, browser=importer,
            ollama_browser_import=True, keychain_access_disabled=True,
            claude_keychain_prompt_policy="always", ollama_cookie_header="session=abc",
        )
        with pytest.raises(InvalidCredentialsError):
            await fetcher.fetch(foreground_ctx)
        assert importer.domains == []

    @pytest.mark.asyncio
    async def test_background_refresh_never_imports(self, settings, make_deps, background_ctx):
        importer = self._importer()
        fetcher = _fetcher(settings, make_deps, self._handler, browser=importer, ollama_browser_import=True)
        with pytest.raises(NotLoggedInError):
            await fetcher.fetch(background_ctx)
        assert importer.domains == []

    @pytest.mark.asyncio
    async def test_never_policy_blocks_foreground(self, settings, make_deps, foreground_ctx):
        importer = self._importer()
        fetcher = _fetcher(
            settings, make_deps, self._handler, browser=importer,
            ollama_browser_import=True, claude_keychain_prompt_policy="never",
        )
        with pytest.raises(NotLoggedInError):
            await fetcher.fetch(foreground_ctx)
        assert importer.domains == []

    @pytest.mark.asyncio
    async def test_working_configured_cookie_skips_import(self, settings, make_deps, foreground_ctx):
        importer = self._importer()
        fetcher = _fetcher(
            settings, make_deps, lambda r: httpx.Response(200, text=USAGE_HTML), browser=importer,
            ollama_browser_import=True, ollama_cookie_header="session=abc",
        )
        snapshot = await fetcher.fetch(foreground_ctx)
        assert snapshot.primary.used_percent == 3
        assert importer.domains == []

    @pytest.mark.asyncio
    async def test_rejected_cookie_falls_back_to_import(self, settings, make_deps, cookie_cache, foreground_ctx):
        importer = self._importer()
        fetcher = _fetcher(
            settings, make_deps, self._handler, browser=importer,
            ollama_browser_import=True, ollama_cookie_header="session=abc",
        )
        snapshot = await fetcher.fetch(foreground_ctx)
        assert snapshot.primary.used_percent == 3
        assert importer.domains == ["ollama.com", "www.ollama.com"]
        assert (await cookie_cache.load("ollama")).cookie_header == "session=browser"

    @pytest.mark.asyncio
    async def test_always_policy_imports_in_background(self, settings, make_deps, background_ctx):
        importer = self._importer()
        fetcher = _fetcher(
            settings, make_deps, self._handler, browser=importer,
            ollama_browser_import=True, claude_keychain_prompt_policy="always",
        )
        snapshot = await fetcher.fetch(background_ctx)
        assert snapshot.secondary.used_percent == 10

    @pytest.mark.asyncio
    async def test_no_browser_session_keeps_stored_error(self, settings, make_deps, foreground_ctx):
        importer = _FakeImporter()
        fetcher = _fetcher(
            settings, make_deps, self._handler, browser=importer,
            ollama_browser_import=True, ollama_cookie_header="session=abc",
        )
        with pytest.raises(InvalidCredentialsError) as info:
            await fetcher.fetch(foreground_ctx)
        assert info.value.provider == "ollama"
        assert importer.domains == ["ollama.com", "www.ollama.com"]
