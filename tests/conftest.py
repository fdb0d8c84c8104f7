# tests/conftest.py — v2
"""Shared test fixtures for all unit and integration tests.

Provides settings without .env, in-memory secure store and keychain doubles,
and HTTP runners backed by ``httpx.MockTransport``. No network, no real
keychain: every OS-facing collaborator is replaced.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

import httpx
import pytest

from quotabar.cache.cookie_header_cache import CookieHeaderCache
from quotabar.cache.memory_store import MemorySecureStore
from quotabar.config.settings import Settings
from quotabar.core.models import FetchContext
from quotabar.credentials.keychain import InMemoryKeychain
from quotabar.logging.context import clear_context
from quotabar.providers.base_fetcher import FetcherDeps
from quotabar.runner.http_client import HttpRunner
from quotabar.runner.subprocess_runner import SubprocessRunner

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

Handler = Callable[[httpx.Request], httpx.Response]


# === FIXTURES: Configuration ===


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from .env, with the in-memory secure store."""
    return Settings(
        _env_file=None,
        secure_store_backend="memory",
        log_file=None,
        claude_credentials_path="/nonexistent/.credentials.json",
    )


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def background_ctx() -> FetchContext:
    return FetchContext(interaction="background", now=FIXED_NOW)


@pytest.fixture
def foreground_ctx() -> FetchContext:
    return FetchContext(interaction="foreground", now=FIXED_NOW)


# === FIXTURES: Doubles ===


@pytest.fixture
def memory_store() -> MemorySecureStore:
    return MemorySecureStore()


@pytest.fixture
def keychain() -> InMemoryKeychain:
    return InMemoryKeychain()


@pytest.fixture
def cookie_cache(memory_store, tmp_path) -> CookieHeaderCache:
    return CookieHeaderCache(memory_store, legacy_dir=tmp_path / "legacy")


def mock_http(handler: Handler, timeout: float = 5.0) -> HttpRunner:
    """HttpRunner whose requests are answered by ``handler``."""
    return HttpRunner(timeout=timeout, transport=httpx.MockTransport(handler))


@pytest.fixture
def http_factory() -> Callable[[Handler], HttpRunner]:
    return mock_http


@pytest.fixture
def make_deps(memory_store, cookie_cache, keychain):
    """Factory: FetcherDeps around a handler, sharing the in-memory doubles."""

    def _make(handler: Handler, browser=None) -> FetcherDeps:
        return FetcherDeps(
            http=mock_http(handler),
            secure_store=memory_store,
            cookie_cache=cookie_cache,
            keychain=keychain,
            subprocess=SubprocessRunner(),
            browser=browser,
        )

    return _make


@pytest.fixture(autouse=True)
def _reset_log_context():
    clear_context()
    yield
    clear_context()
