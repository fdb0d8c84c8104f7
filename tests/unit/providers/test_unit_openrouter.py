# tests/unit/providers/test_unit_openrouter.py — v1
"""Tests for providers/openrouter.py — credits plus best-effort key quota."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from quotabar.core.errors import APIError, NotLoggedInError, ParseFailedError
from quotabar.providers.openrouter import APP_TITLE, OpenRouterUsageFetcher

API_KEY = "sk-or-v1-0123456789abcdef"
CREDITS = {"data": {"total_credits": 50, "total_usage": 45.3895}}
KEY = {"data": {"label": "laptop", "limit": 20, "usage": 5, "limit_remaining": 15, "is_free_tier": False}}


def _fetcher(settings, make_deps, handler, **overrides) -> OpenRouterUsageFetcher:
    update = {"openrouter_api_key": API_KEY, **overrides}
    return OpenRouterUsageFetcher(settings.model_copy(update=update), make_deps(handler))


class TestOpenRouterFetcher:
    @pytest.mark.asyncio
    async def test_credits_and_key(self, settings, make_deps, background_ctx):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.path.endswith("/credits"):
                return httpx.Response(200, json=CREDITS)
            return httpx.Response(200, json=KEY)

        snapshot = await _fetcher(settings, make_deps, handler).fetch(background_ctx)

        assert [r.url.path.rsplit("/", 1)[-1] for r in seen] == ["credits", "key"]
        assert seen[0].headers["authorization"] == f"Bearer {API_KEY}"
        assert seen[0].headers["x-title"] == APP_TITLE
        assert snapshot.primary.used_percent == pytest.approx(25.0)
        assert snapshot.credits_remaining == pytest.approx(4.6105)
        assert snapshot.identity.login_method == "Balance: $4.61"
        assert snapshot.identity.account_organization == "laptop"
        assert snapshot.updated_at == background_ctx.now

    @pytest.mark.asyncio
    async def test_key_failure_falls_back_to_credits(self, settings, make_deps, background_ctx):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/credits"):
                return httpx.Response(200, json={"data": {"total_credits": 50, "total_usage": 45.39}})
            return httpx.Response(500)

        snapshot = await _fetcher(settings, make_deps, handler).fetch(background_ctx)
        assert snapshot.primary.used_percent == pytest.approx(90.78)
        assert snapshot.identity.account_organization is None

    @pytest.mark.asyncio
    async def test_slow_key_is_abandoned(self, settings, make_deps, background_ctx):
        async def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/credits"):
                return httpx.Response(200, json={"data": {"total_credits": 50, "total_usage": 45.39}})
            await asyncio.sleep(2)
            return httpx.Response(200, json=KEY)

        fetcher = _fetcher(settings, make_deps, handler, openrouter_key_timeout_s=0.2)
        snapshot = await asyncio.wait_for(fetcher.fetch(background_ctx), timeout=1.5)
        assert snapshot.primary.used_percent == pytest.approx(90.78)

    @pytest.mark.asyncio
    async def test_credits_error_hides_body(self, settings, make_deps, background_ctx):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"message": f"bad key {API_KEY}"}})

        with pytest.raises(APIError) as info:
            await _fetcher(settings, make_deps, handler).fetch(background_ctx)
        assert str(info.value) == "HTTP 401"
        assert info.value.status == 401
        assert info.value.provider == "openrouter"

    @pytest.mark.asyncio
    async def test_undecodable_credits(self, settings, make_deps, background_ctx):
        with pytest.raises(ParseFailedError):
            await _fetcher(settings, make_deps, lambda r: httpx.Response(200, text="<html/>")).fetch(background_ctx)

    @pytest.mark.asyncio
    async def test_missing_key(self, settings, make_deps, background_ctx):
        fetcher = _fetcher(settings, make_deps, lambda r: httpx.Response(200), openrouter_api_key="  ")
        with pytest.raises(NotLoggedInError):
            await fetcher.fetch(background_ctx)
