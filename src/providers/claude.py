# src/providers/claude.py — v2
"""Claude usage from the OAuth usage endpoint."""

from __future__ import annotations

import logging

from quotabar.config.settings import Settings
from quotabar.core.errors import APIError, InvalidCredentialsError, UsageError
from quotabar.core.models import FetchContext, UsageSnapshot
from quotabar.credentials.access_policy import CredentialAccessPolicy
from quotabar.credentials.claude_oauth import (
    ClaudeOAuthCredentialStore,
    PreflightKeychainReader,
    SecurityCLIReader,
)
from quotabar.credentials.keychain import SecurityCLIKeychain
from quotabar.parsers.claude_usage import parse_oauth_usage
from quotabar.parsers.http_errors import compose_api_error
from quotabar.providers.base_fetcher import BaseUsageFetcher, FetcherDeps

logger = logging.getLogger(__name__)

OAUTH_BETA_HEADER = "oauth-2025-04-20"


def build_credential_store(settings: Settings, deps: FetcherDeps) -> ClaudeOAuthCredentialStore:
    """Credential store wired to the configured readers and access policy."""
    cli_keychain = SecurityCLIKeychain(
        runner=deps.subprocess,
        binary=settings.security_binary,
        timeout=settings.keychain_read_timeout_s,
    )
    service = settings.claude_keychain_service
    return ClaudeOAuthCredentialStore(
        secure_store=deps.secure_store,
        policy=CredentialAccessPolicy.from_settings(settings),
        readers={
            "experimental": SecurityCLIReader(
                cli_keychain, service=service, timeout=settings.keychain_read_timeout_s
            ),
            "legacy": PreflightKeychainReader(
                deps.keychain, service=service, prompt_timeout=settings.keychain_prompt_timeout_s
            ),
        },
        credentials_path=settings.claude_credentials_path,
        configured_token=settings.claude_oauth_token,
    )


class ClaudeUsageFetcher(BaseUsageFetcher):
    """Fetches 5-hour / weekly utilization with Claude CLI OAuth credentials."""

    provider = "claude"

    def __init__(
        self,
        settings: Settings,
        deps: FetcherDeps,
        credentials: ClaudeOAuthCredentialStore | None = None,
    ) -> None:
        super().__init__(settings, deps)
        self.credentials = credentials or build_credential_store(settings, deps)

    async def fetch(self, ctx: FetchContext) -> UsageSnapshot:
        try:
            record = await self.credentials.load(ctx)
            logger.debug("Using Claude credentials from %s", record.source)
            result = await self.deps.http.get(
                self.settings.claude_usage_url,
                headers={
                    "Authorization": f"Bearer {record.credentials.access_token}",
                    "Accept": "application/json",
                    "anthropic-beta": OAUTH_BETA_HEADER,
                },
            )
            if result.status == 401:
                await self.credentials.invalidate()
                raise InvalidCredentialsError(
                    "Claude OAuth token was rejected (HTTP 401). Run `claude` to log in again."
                )
            if not result.ok:
                raise APIError(compose_api_error(result.status, result.body), status=result.status)
            return parse_oauth_usage(
                result.body,
                rate_limit_tier=record.credentials.rate_limit_tier,
                now=ctx.now,
            )
        except UsageError as exc:
            raise exc.with_provider(self.provider)
