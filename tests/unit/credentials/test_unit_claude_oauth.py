# tests/unit/credentials/test_unit_claude_oauth.py — v2
"""Tests for credentials/claude_oauth.py — parsing, resolution order, gating."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from quotabar.cache.models import SecretEntry
from quotabar.core.errors import AccessDeniedError, NotLoggedInError, ParseFailedError
from quotabar.core.models import FetchContext
from quotabar.credentials.access_policy import CredentialAccessPolicy
from quotabar.credentials.claude_oauth import (
    CACHE_KEY,
    CLAUDE_KEYCHAIN_SERVICE,
    ClaudeOAuthCredentialStore,
    OAuthCredentials,
    PreflightKeychainReader,
    SecurityCLIReader,
    reader_should_retry,
)
from quotabar.credentials.keychain import InMemoryKeychain

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _blob(token: str = "tok", expires: datetime | None = NOW + timedelta(hours=1), tier: str | None = "default_claude_max_20x") -> str:
    oauth: dict = {"accessToken": token, "refreshToken": "ref", "scopes": ["user:inference"]}
    if expires is not None:
        oauth["expiresAt"] = int(expires.timestamp() * 1000)
    if tier is not None:
        oauth["rateLimitTier"] = tier
    return json.dumps({"claudeAiOauth": oauth})


class _SlowKeychain(InMemoryKeychain):
    async def read_generic_password(self, service, account=None, timeout=None):
        await asyncio.sleep(0.05)
        return await super().read_generic_password(service, account, timeout)


class _PromptingKeychain(InMemoryKeychain):
    """Keychain whose item needs user approval; records read timeouts."""

    def __init__(self) -> None:
        super().__init__()
        self.preflight_override = "interaction_required"
        self.timeouts: list = []

    async def read_generic_password(self, service, account=None, timeout=None):
        self.timeouts.append(timeout)
        return await super().read_generic_password(service, account, timeout)


def _store(memory_store, keychain, *, policy=None, path=None, token="") -> ClaudeOAuthCredentialStore:
    return ClaudeOAuthCredentialStore(
        secure_store=memory_store,
        policy=policy or CredentialAccessPolicy(),
        readers={
            "experimental": SecurityCLIReader(keychain),
            "legacy": PreflightKeychainReader(keychain),
        },
        credentials_path=path,
        configured_token=token,
    )


FG = FetchContext(interaction="foreground", now=NOW)
BG = FetchContext(interaction="background", now=NOW)


class TestOAuthCredentialsParse:
    def test_parse_full(self):
        creds = OAuthCredentials.parse(_blob())
        assert creds.access_token == "tok"
        assert creds.refresh_token == "ref"
        assert creds.expires_at == NOW + timedelta(hours=1)
        assert creds.rate_limit_tier == "default_claude_max_20x"
        assert not creds.is_expired(NOW)

    def test_missing_block(self):
        with pytest.raises(NotLoggedInError):
            OAuthCredentials.parse("{}")

    def test_empty_token(self):
        with pytest.raises(NotLoggedInError):
            OAuthCredentials.parse(_blob(token="  "))

    def test_not_json(self):
        with pytest.raises(ParseFailedError):
            OAuthCredentials.parse("not json")

    def test_no_expiry_counts_as_expired(self):
        assert OAuthCredentials.parse(_blob(expires=None)).is_expired(NOW)


class TestReaderRetryPredicate:
    def test_access_denied_stops(self):
        assert reader_should_retry(AccessDeniedError("no")) is False

    def test_not_found_falls_through(self):
        assert reader_should_retry(NotLoggedInError("no")) is True

    def test_unknown_error_stops(self):
        assert reader_should_retry(RuntimeError("x")) is False


class TestResolutionOrder:
    @pytest.mark.asyncio
    async def test_configured_token_wins(self, memory_store, keychain):
        record = await _store(memory_store, keychain, token="env-token").load(BG)
        assert record.source == "environment"
        assert record.credentials.access_token == "env-token"
        assert not record.credentials.is_expired(NOW)
        assert keychain.read_count == 0

    @pytest.mark.asyncio
    async def test_credentials_file_then_memory(self, memory_store, keychain, tmp_path):
        path = tmp_path / ".credentials.json"
        path.write_text(_blob(), encoding="utf-8")
        store = _store(memory_store, keychain, path=path)

        first = await store.load(BG)
        second = await store.load(BG)

        assert first.source == "credentials_file"
        assert second.source == "memory_cache"
        cached = await memory_store.load(CACHE_KEY, SecretEntry)
        assert cached.is_found
        assert cached.value.owner == "claude_cli"

    @pytest.mark.asyncio
    async def test_secure_store_before_file(self, memory_store, keychain, tmp_path):
        await memory_store.store(CACHE_KEY, SecretEntry(data=_blob("cached"), stored_at=NOW))
        path = tmp_path / ".credentials.json"
        path.write_text(_blob("file"), encoding="utf-8")
        record = await _store(memory_store, keychain, path=path).load(BG)
        assert record.source == "secure_store"
        assert record.credentials.access_token == "cached"

    @pytest.mark.asyncio
    async def test_memory_cache_expires(self, memory_store, keychain, tmp_path):
        path = tmp_path / ".credentials.json"
        path.write_text(_blob(expires=NOW + timedelta(hours=3)), encoding="utf-8")
        store = _store(memory_store, keychain, path=path)
        await store.load(BG)
        later = FetchContext(interaction="background", now=NOW + timedelta(minutes=31))
        assert (await store.load(later)).source == "secure_store"

    @pytest.mark.asyncio
    async def test_corrupt_secure_store_entry_cleared(self, memory_store, keychain):
        memory_store.put_raw(CACHE_KEY, b"garbage")
        with pytest.raises(NotLoggedInError):
            await _store(memory_store, keychain).load(BG)
        assert CACHE_KEY not in memory_store

    @pytest.mark.asyncio
    async def test_nothing_anywhere(self, memory_store, keychain):
        with pytest.raises(NotLoggedInError) as info:
            await _store(memory_store, keychain).load(FG)
        assert info.value.provider == "claude"


class TestKeychainGate:
    @pytest.mark.asyncio
    async def test_background_never_reads_keychain(self, memory_store, keychain):
        keychain.items[(CLAUDE_KEYCHAIN_SERVICE, "user")] = _blob()
        with pytest.raises(NotLoggedInError):
            await _store(memory_store, keychain).load(BG)
        assert keychain.read_count == 0
        assert keychain.preflight_count == 0

    @pytest.mark.asyncio
    async def test_foreground_reads_via_legacy_reader(self, memory_store, keychain):
        keychain.items[(CLAUDE_KEYCHAIN_SERVICE, "user")] = _blob()
        record = await _store(memory_store, keychain).load(FG)
        assert record.source == "claude_keychain"
        assert keychain.preflight_count == 1
        assert (await memory_store.load(CACHE_KEY, SecretEntry)).is_found

    @pytest.mark.asyncio
    async def test_access_disabled_blocks_foreground(self, memory_store, keychain):
        keychain.items[(CLAUDE_KEYCHAIN_SERVICE, "user")] = _blob()
        policy = CredentialAccessPolicy(access_enabled=False, prompt_policy="always")
        with pytest.raises(NotLoggedInError):
            await _store(memory_store, keychain, policy=policy).load(FG)
        assert keychain.read_count == 0

    @pytest.mark.asyncio
    async def test_experimental_reader_runs_in_background(self, memory_store, keychain):
        keychain.items[(CLAUDE_KEYCHAIN_SERVICE, "user")] = _blob()
        policy = CredentialAccessPolicy(prompt_policy="never", read_strategy="experimental")
        record = await _store(memory_store, keychain, policy=policy).load(BG)
        assert record.source == "claude_keychain"
        assert keychain.preflight_count == 0

    @pytest.mark.asyncio
    async def test_denied_read_surfaces_error(self, memory_store, keychain):
        keychain.items[(CLAUDE_KEYCHAIN_SERVICE, "user")] = _blob()
        keychain.deny_reads = True
        with pytest.raises(AccessDeniedError) as info:
            await _store(memory_store, keychain).load(FG)
        assert info.value.provider == "claude"

    @pytest.mark.asyncio
    async def test_denied_read_falls_back_to_expired(self, memory_store, keychain):
        await memory_store.store(
            CACHE_KEY, SecretEntry(data=_blob(expires=NOW - timedelta(hours=1)), stored_at=NOW)
        )
        keychain.deny_reads = True
        record = await _store(memory_store, keychain).load(FG)
        assert record.source == "secure_store"
        assert record.credentials.is_expired(NOW)

    @pytest.mark.asyncio
    async def test_concurrent_loads_read_keychain_once(self, memory_store):
        keychain = _SlowKeychain()
        keychain.items[(CLAUDE_KEYCHAIN_SERVICE, "user")] = _blob()
        store = _store(memory_store, keychain)
        records = await asyncio.gather(*(store.load(FG) for _ in range(5)))
        assert keychain.read_count == 1
        assert {r.credentials.access_token for r in records} == {"tok"}


class TestLegacyReaderTimeouts:
    @pytest.mark.asyncio
    async def test_interactive_read_gets_prompt_timeout(self):
        keychain = _PromptingKeychain()
        keychain.items[(CLAUDE_KEYCHAIN_SERVICE, "user")] = _blob()
        blob = await PreflightKeychainReader(keychain, prompt_timeout=25.0).read()
        assert json.loads(blob)["claudeAiOauth"]["accessToken"] == "tok"
        assert keychain.timeouts == [25.0]

    @pytest.mark.asyncio
    async def test_silent_read_keeps_default_timeout(self):
        keychain = _PromptingKeychain()
        keychain.preflight_override = None
        keychain.items[(CLAUDE_KEYCHAIN_SERVICE, "user")] = _blob()
        await PreflightKeychainReader(keychain, prompt_timeout=25.0).read()
        assert keychain.timeouts == [None]


class TestInvalidate:
    @pytest.mark.asyncio
    async def test_invalidate_drops_caches(self, memory_store, keychain, tmp_path):
        path = tmp_path / ".credentials.json"
        path.write_text(_blob(), encoding="utf-8")
        store = _store(memory_store, keychain, path=path)
        await store.load(BG)
        await store.invalidate()
        assert CACHE_KEY not in memory_store
        assert (await store.load(BG)).source == "credentials_file"
