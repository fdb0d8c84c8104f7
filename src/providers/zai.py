# src/providers/zai.py — v1
"""z.ai coding plan quota, tried across the global and mainland hosts."""

from __future__ import annotations

import logging

from quotabar.core.errors import (
    APIError,
    InvalidCredentialsError,
    NetworkError,
    NotLoggedInError,
    TimedOutError,
    UsageError,
)
from quotabar.core.models import FetchContext, UsageSnapshot
from quotabar.logging.context import set_candidate_context
from quotabar.parsers.http_errors import compose_api_error
from quotabar.parsers.zai_quota import QUOTA_API_PATH, parse_quota_response
from quotabar.providers.base_fetcher import BaseUsageFetcher
from quotabar.providers.retry_runner import run_candidates

logger = logging.getLogger(__name__)

GLOBAL_HOST = "https://api.z.ai"
CHINA_HOST = "https://open.bigmodel.cn"


def resolve_quota_url(host: str) -> str:
    """Quota URL for a configured host.

    A bare host gets ``https://``; a URL without a path gets the quota path.
    A URL that already has a path is used as is.
    """
    value = host.strip()
    if "://" not in value:
        value = f"https://{value}"
    scheme, _, rest = value.partition("://")
    authority, slash, path = rest.partition("/")
    if not slash or not path.strip("/"):
        return f"{scheme}://{authority}/{QUOTA_API_PATH}"
    return value


def host_candidates(configured_host: str) -> list[str]:
    """Configured host first, then global, then China mainland (deduplicated)."""
    urls: list[str] = []
    for host in (configured_host, GLOBAL_HOST, CHINA_HOST):
        if not host.strip():
            continue
        url = resolve_quota_url(host)
        if url not in urls:
            urls.append(url)
    return urls


def should_retry(error: Exception) -> bool:
    if isinstance(error, (TimedOutError, NetworkError)):
        return True
    return isinstance(error, APIError) and error.is_server_error


class ZaiUsageFetcher(BaseUsageFetcher):
    provider = "zai"

    async def fetch(self, ctx: FetchContext) -> UsageSnapshot:
        api_key = self.settings.zai_api_key.strip()
        if not api_key:
            raise NotLoggedInError("z.ai API key not configured (ZAI_API_KEY).", provider=self.provider)

        async def attempt(url: str) -> UsageSnapshot:
            set_candidate_context(url)
            result = await self.deps.http.get(
                url,
                headers={"Authorization": f"Bearer {api_key}", "Accept": "application/json"},
            )
            if result.status in (401, 403):
                raise InvalidCredentialsError(compose_api_error(result.status, result.body))
            if not result.ok:
                raise APIError(compose_api_error(result.status, result.body), status=result.status)
            return parse_quota_response(result.body).to_snapshot(ctx.now)

        def on_retry(url: str, error: Exception) -> None:
            logger.info("z.ai host %s failed (%s), trying next host", url, error)

        try:
            return await run_candidates(
                host_candidates(self.settings.zai_api_host), should_retry, attempt, on_retry=on_retry
            )
        except UsageError as exc:
            raise exc.with_provider(self.provider)
        finally:
            set_candidate_context(None)
