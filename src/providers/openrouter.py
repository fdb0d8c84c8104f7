# src/providers/openrouter.py — v1
"""OpenRouter credit balance and key quota.

``/credits`` is mandatory; ``/key`` only enriches the snapshot with the
per-key limit and is abandoned after a short deadline.
"""

from __future__ import annotations

import asyncio
import logging

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from quotabar.core.errors import APIError, NotLoggedInError, ParseFailedError, UsageError
from quotabar.core.models import FetchContext, ProviderIdentity, RateWindow, UsageSnapshot
from quotabar.parsers.redaction import redacted_debug_body, sanitized_body_summary
from quotabar.providers.base_fetcher import BaseUsageFetcher

logger = logging.getLogger(__name__)

APP_TITLE = "QuotaBar"


class _Credits(BaseModel):
    model_config = ConfigDict(extra="ignore")

    total_credits: float = 0.0
    total_usage: float = 0.0


class _CreditsResponse(BaseModel):
    data: _Credits


class KeyInfo(BaseModel):
    """Subset of ``/key``: spend limit and usage of the API key."""

    model_config = ConfigDict(extra="ignore")

    label: str | None = None
    limit: float | None = None
    usage: float | None = None
    limit_remaining: float | None = None
    is_free_tier: bool = False


class _KeyResponse(BaseModel):
    data: KeyInfo = Field(default_factory=KeyInfo)


class OpenRouterUsageFetcher(BaseUsageFetcher):
    provider = "openrouter"

    async def fetch(self, ctx: FetchContext) -> UsageSnapshot:
        api_key = self.settings.openrouter_api_key.strip()
        if not api_key:
            raise NotLoggedInError("OpenRouter API key not configured (OPENROUTER_API_KEY).", provider=self.provider)
        try:
            credits = await self._credits(api_key)
        except UsageError as exc:
            raise exc.with_provider(self.provider)
        key_info = await self._key_info(api_key)
        return self._snapshot(credits, key_info, ctx)

    def _headers(self, api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
            "X-Title": APP_TITLE,
        }

    def _url(self, path: str) -> str:
        return f"{self.settings.openrouter_api_url.rstrip('/')}/{path}"

    async def _credits(self, api_key: str) -> _Credits:
        result = await self.deps.http.get(self._url("credits"), headers=self._headers(api_key))
        if result.status != 200:
            logger.warning(
                "OpenRouter /credits returned HTTP %d: %s",
                result.status, sanitized_body_summary(result.body),
            )
            raise APIError(f"HTTP {result.status}", status=result.status)
        try:
            return _CreditsResponse.model_validate_json(result.body).data
        except ValidationError as exc:
            logger.debug("Undecodable /credits body: %s", redacted_debug_body(result.body))
            raise ParseFailedError("Failed to parse OpenRouter credits response") from exc

    async def _key_info(self, api_key: str) -> KeyInfo | None:
        """Best effort; any failure or a slow answer yields None."""
        timeout = self.settings.openrouter_key_timeout_s
        try:
            result = await asyncio.wait_for(
                self.deps.http.get(self._url("key"), headers=self._headers(api_key), timeout=timeout),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, UsageError) as exc:
            logger.debug("OpenRouter /key skipped (%s)", type(exc).__name__)
            return None
        if result.status != 200:
            logger.debug("OpenRouter /key returned HTTP %d", result.status)
            return None
        try:
            return _KeyResponse.model_validate_json(result.body).data
        except ValidationError:
            logger.debug("Undecodable /key body: %s", redacted_debug_body(result.body))
            return None

    def _snapshot(
        self, credits: _Credits, key_info: KeyInfo | None, ctx: FetchContext
    ) -> UsageSnapshot:
        balance = max(0.0, credits.total_credits - credits.total_usage)

        primary: RateWindow | None = None
        if key_info is not None and (key_info.limit or 0) > 0 and (key_info.usage or 0) >= 0:
            primary = RateWindow(used_percent=(key_info.usage or 0) / key_info.limit * 100.0)
        elif credits.total_credits > 0:
            primary = RateWindow(used_percent=credits.total_usage / credits.total_credits * 100.0)

        return UsageSnapshot(
            primary=primary,
            identity=ProviderIdentity(
                provider=self.provider,
                account_organization=key_info.label if key_info else None,
                login_method=f"Balance: ${balance:.2f}",
            ),
            credits_remaining=balance,
            updated_at=ctx.now,
        )
