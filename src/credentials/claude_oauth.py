# src/credentials/claude_oauth.py — v2
"""Claude OAuth credential resolution.

Resolution order:
    1. Configured token (CLAUDE_OAUTH_TOKEN)
    2. In-memory cache (30 minute validity)
    3. Secure store entry ``oauth.claude``
    4. Claude CLI credentials file (~/.claude/.credentials.json)
    5. Claude CLI keychain item, through the access policy and the readers

Steps 1-4 never prompt. Step 5 holds a lock and re-checks the caches after
acquiring it, so concurrent refreshes produce at most one OS prompt.
Expired credentials are only returned when nothing fresher exists.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from quotabar.cache.base_cache_store import BaseSecureStore, SecureStoreError
from quotabar.cache.models import CacheKey, SecretEntry
from quotabar.core.errors import (
    AccessDeniedError,
    NonZeroExitError,
    NotLoggedInError,
    ParseFailedError,
    ProcessLaunchError,
    TimedOutError,
    UsageError,
)
from quotabar.core.models import FetchContext
from quotabar.credentials.access_policy import CredentialAccessPolicy, KeychainReader
from quotabar.credentials.keychain import BaseKeychain
from quotabar.logging.context import set_candidate_context
from quotabar.providers.retry_runner import run_candidates

logger = logging.getLogger(__name__)

CLAUDE_KEYCHAIN_SERVICE = "Claude Code-credentials"
MEMORY_CACHE_TTL = timedelta(seconds=1800)
CACHE_KEY = CacheKey.oauth("claude")

CredentialOwner = Literal["claude_cli", "quotabar", "environment"]
CredentialSource = Literal[
    "environment", "memory_cache", "secure_store", "credentials_file", "claude_keychain"
]


# === MODELS ===


class _OAuthBlock(BaseModel):
    access_token: str | None = Field(default=None, alias="accessToken")
    refresh_token: str | None = Field(default=None, alias="refreshToken")
    expires_at: float | None = Field(default=None, alias="expiresAt")
    scopes: list[str] | None = None
    rate_limit_tier: str | None = Field(default=None, alias="rateLimitTier")


class _CredentialsFile(BaseModel):
    claude_ai_oauth: _OAuthBlock | None = Field(default=None, alias="claudeAiOauth")


class OAuthCredentials(BaseModel):
    """Access token plus metadata from the Claude CLI credentials blob."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    scopes: list[str] = Field(default_factory=list)
    rate_limit_tier: str | None = None

    @classmethod
    def parse(cls, data: str | bytes) -> OAuthCredentials:
        """Parse ``{"claudeAiOauth": {...}}``; ``expiresAt`` is epoch millis.

        Raises:
            ParseFailedError: Not JSON / wrong shape.
            NotLoggedInError: No OAuth block or empty access token.
        """
        try:
            root = _CredentialsFile.model_validate_json(data)
        except ValidationError as exc:
            raise ParseFailedError("Claude OAuth credentials could not be decoded") from exc
        oauth = root.claude_ai_oauth
        if oauth is None:
            raise NotLoggedInError("Claude OAuth credentials are missing the claudeAiOauth block")
        token = (oauth.access_token or "").strip()
        if not token:
            raise NotLoggedInError("Claude OAuth credentials have no access token")
        expires_at = (
            datetime.fromtimestamp(oauth.expires_at / 1000.0, tz=timezone.utc)
            if oauth.expires_at is not None
            else None
        )
        return cls(
            access_token=token,
            refresh_token=oauth.refresh_token,
            expires_at=expires_at,
            scopes=oauth.scopes or [],
            rate_limit_tier=oauth.rate_limit_tier,
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        """Credentials without an expiry are treated as expired."""
        if self.expires_at is None:
            return True
        return (now or datetime.now(timezone.utc)) >= self.expires_at


@dataclass(frozen=True)
class CredentialRecord:
    credentials: OAuthCredentials
    owner: CredentialOwner
    source: CredentialSource


# === READERS ===


class CredentialReader(ABC):
    """Reads the raw Claude credentials blob from the OS vault."""

    name: KeychainReader

    @abstractmethod
    async def read(self) -> str:
        """Return the raw blob.

        Raises:
            NotLoggedInError: No item.
            AccessDeniedError: User or OS refused access.
            TimedOutError / NonZeroExitError: Reader failure.
        """


class SecurityCLIReader(CredentialReader):
    """Experimental reader: one bounded ``security find-generic-password -w`` call."""

    name: KeychainReader = "experimental"

    def __init__(
        self,
        keychain: BaseKeychain,
        service: str = CLAUDE_KEYCHAIN_SERVICE,
        account: str | None = None,
        timeout: float = 1.5,
    ) -> None:
        self._keychain = keychain
        self._service = service
        self._account = account
        self._timeout = timeout

    async def read(self) -> str:
        raw = await self._keychain.read_generic_password(
            self._service, self._account, timeout=self._timeout
        )
        blob = (raw or "").strip()
        if not blob:
            raise NotLoggedInError("Claude keychain item not found")
        return blob


class PreflightKeychainReader(CredentialReader):
    """Legacy reader: probe without prompting, then read (may prompt)."""

    name: KeychainReader = "legacy"

    def __init__(
        self,
        keychain: BaseKeychain,
        service: str = CLAUDE_KEYCHAIN_SERVICE,
        prompt_timeout: float = 30.0,
    ) -> None:
        self._keychain = keychain
        self._service = service
        self._prompt_timeout = prompt_timeout

    async def read(self) -> str:
        outcome = await self._keychain.preflight(self._service)
        if outcome == "not_found":
            raise NotLoggedInError("Claude keychain item not found")
        timeout = None
        if outcome == "interaction_required":
            # Leave the user time to answer the authorization dialog
            logger.info("Claude keychain read will require user interaction")
            timeout = self._prompt_timeout
        raw = await self._keychain.read_generic_password(self._service, timeout=timeout)
        blob = (raw or "").strip()
        if not blob:
            raise NotLoggedInError("Claude keychain item not found")
        return blob


def reader_should_retry(error: Exception) -> bool:
    """Fall through to the next reader unless the user denied access."""
    if isinstance(error, AccessDeniedError):
        return False
    return isinstance(
        error,
        (TimedOutError, NonZeroExitError, ProcessLaunchError, ParseFailedError, NotLoggedInError),
    )


# === STORE ===


class ClaudeOAuthCredentialStore:
    """Resolves Claude OAuth credentials from every known source.

    Args:
        secure_store: Store holding the ``oauth.claude`` cache entry.
        policy: Keychain access snapshot.
        readers: Vault readers by name; ``policy`` picks which run.
        credentials_path: Claude CLI credentials file.
        configured_token: Token from configuration (skips everything else).
    """

    def __init__(
        self,
        secure_store: BaseSecureStore,
        policy: CredentialAccessPolicy,
        readers: dict[KeychainReader, CredentialReader],
        credentials_path: Path | None = None,
        configured_token: str = "",
    ) -> None:
        self._secure_store = secure_store
        self._policy = policy
        self._readers = readers
        self._credentials_path = (
            Path(credentials_path).expanduser() if credentials_path else None
        )
        self._configured_token = configured_token.strip()
        self._memory: tuple[CredentialRecord, datetime] | None = None
        self._keychain_lock = asyncio.Lock()

    async def load(self, ctx: FetchContext) -> CredentialRecord:
        """Resolve credentials for one fetch.

        Raises:
            NotLoggedInError: No credentials anywhere.
            UsageError: The most relevant source failure when nothing resolved.
        """
        if self._configured_token:
            return CredentialRecord(
                credentials=OAuthCredentials(
                    access_token=self._configured_token,
                    expires_at=datetime.max.replace(tzinfo=timezone.utc),
                    scopes=["user:profile"],
                ),
                owner="environment",
                source="environment",
            )

        cached = self._memory_hit(ctx.now)
        if cached is not None:
            return cached

        expired: CredentialRecord | None = None
        last_error: UsageError | None = None

        stored = await self._load_secure_store()
        if stored is not None:
            if not stored.credentials.is_expired(ctx.now):
                self._remember(stored, ctx.now)
                return stored
            expired = stored

        try:
            from_file = self._load_file()
        except UsageError as exc:
            last_error = exc
            from_file = None
        if from_file is not None:
            record, raw = from_file
            if not record.credentials.is_expired(ctx.now):
                await self._cache(record, raw, ctx.now)
                return record
            expired = expired or record

        try:
            from_keychain = await self._load_keychain(ctx)
        except NotLoggedInError:
            from_keychain = None
        except UsageError as exc:
            logger.warning("Claude keychain read failed: %s", exc)
            last_error = exc
            from_keychain = None
        if from_keychain is not None:
            return from_keychain

        if expired is not None:
            logger.info("Using expired Claude credentials from %s", expired.source)
            return expired
        if last_error is not None:
            raise last_error.with_provider("claude")
        raise NotLoggedInError(
            "Claude OAuth credentials not found. Run `claude` to log in.", provider="claude"
        )

    async def invalidate(self) -> None:
        """Drop cached credentials (after the API rejected them)."""
        self._memory = None
        try:
            await self._secure_store.clear(CACHE_KEY)
        except SecureStoreError as exc:
            logger.warning("Could not clear cached Claude credentials: %s", exc)

    # --- sources ---

    def _memory_hit(self, now: datetime) -> CredentialRecord | None:
        if self._memory is None:
            return None
        record, stored_at = self._memory
        if now - stored_at >= MEMORY_CACHE_TTL or record.credentials.is_expired(now):
            self._memory = None
            return None
        return CredentialRecord(record.credentials, record.owner, "memory_cache")

    def _remember(self, record: CredentialRecord, now: datetime) -> None:
        self._memory = (record, now)

    async def _load_secure_store(self) -> CredentialRecord | None:
        result = await self._secure_store.load(CACHE_KEY, SecretEntry)
        if result.is_missing:
            return None
        if result.is_found and result.value is not None:
            try:
                creds = OAuthCredentials.parse(result.value.data)
            except UsageError:
                logger.warning("Cached Claude credentials are unusable; clearing")
            else:
                owner = result.value.owner or "claude_cli"
                return CredentialRecord(creds, owner, "secure_store")  # type: ignore[arg-type]
        try:
            await self._secure_store.clear(CACHE_KEY)
        except SecureStoreError as exc:
            logger.warning("Could not clear invalid Claude cache entry: %s", exc)
        return None

    def _load_file(self) -> tuple[CredentialRecord, str] | None:
        path = self._credentials_path
        if path is None or not path.exists():
            return None
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ParseFailedError(f"Cannot read {path.name}: {exc.strerror}") from exc
        creds = OAuthCredentials.parse(raw)
        return CredentialRecord(creds, "claude_cli", "credentials_file"), raw

    async def _load_keychain(self, ctx: FetchContext) -> CredentialRecord | None:
        names = self._policy.readers_for(ctx.interaction)
        readers = [self._readers[n] for n in names if n in self._readers]
        if not readers:
            return None

        async with self._keychain_lock:
            # Another task may have resolved credentials while we waited
            cached = self._memory_hit(ctx.now)
            if cached is not None:
                return cached
            stored = await self._load_secure_store()
            if stored is not None and not stored.credentials.is_expired(ctx.now):
                self._remember(stored, ctx.now)
                return stored

            async def attempt(reader: CredentialReader) -> tuple[OAuthCredentials, str]:
                set_candidate_context(reader.name)
                raw = await reader.read()
                return OAuthCredentials.parse(raw), raw

            def on_retry(reader: CredentialReader, error: Exception) -> None:
                logger.warning(
                    "Claude keychain %s reader failed (%s); falling back",
                    reader.name, type(error).__name__,
                )

            try:
                creds, raw = await run_candidates(
                    readers, reader_should_retry, attempt, on_retry=on_retry
                )
            finally:
                set_candidate_context(None)

        record = CredentialRecord(creds, "claude_cli", "claude_keychain")
        await self._cache(record, raw, ctx.now)
        return record

    async def _cache(self, record: CredentialRecord, raw: str, now: datetime) -> None:
        self._remember(record, now)
        entry = SecretEntry(data=raw, stored_at=now, owner=record.owner)
        try:
            await self._secure_store.store(CACHE_KEY, entry)
        except SecureStoreError as exc:
            logger.warning("Could not cache Claude credentials: %s", exc)

