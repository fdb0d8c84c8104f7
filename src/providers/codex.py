# src/providers/codex.py — v2
"""Codex usage from the ChatGPT web dashboard (cookie authenticated)."""

from __future__ import annotations

import logging

from quotabar.core.errors import (
    APIError,
    InvalidCredentialsError,
    NotLoggedInError,
    ParseFailedError,
    UsageError,
)
from quotabar.core.models import FetchContext, ProviderIdentity, RateWindow, UsageSnapshot
from quotabar.logging.context import set_candidate_context
from quotabar.parsers import openai_dashboard as dashboard
from quotabar.parsers.http_errors import compose_api_error
from quotabar.providers.base_fetcher import BaseUsageFetcher, CookieCandidate, is_auth_failure
from quotabar.providers.retry_runner import run_candidates

logger = logging.getLogger(__name__)

_HEADERS = {
    "Accept": "text/html,application/xhtml+xml",
    "Accept-Language": "en-US,en;q=0.9",
}


class CodexUsageFetcher(BaseUsageFetcher):
    """Scrapes the Codex usage page with a ChatGPT session cookie."""

    provider = "codex"

    async def fetch(self, ctx: FetchContext) -> UsageSnapshot:
        candidates = await self.cookie_candidates(self.settings.codex_cookie_header)
        if not candidates:
            raise NotLoggedInError(
                "No ChatGPT session cookie. Set CODEX_COOKIE_HEADER or import one.",
                provider=self.provider,
            )

        async def attempt(candidate: CookieCandidate) -> UsageSnapshot:
            set_candidate_context(candidate.label)
            try:
                return await self._fetch_with_cookie(candidate, ctx)
            except (NotLoggedInError, InvalidCredentialsError):
                await self.forget_cookie(candidate)
                raise

        def on_retry(candidate: CookieCandidate, error: Exception) -> None:
            logger.info("Codex cookie from %s rejected (%s)", candidate.label, type(error).__name__)

        try:
            return await run_candidates(candidates, is_auth_failure, attempt, on_retry=on_retry)
        except UsageError as exc:
            raise exc.with_provider(self.provider)
        finally:
            set_candidate_context(None)

    async def _fetch_with_cookie(
        self, candidate: CookieCandidate, ctx: FetchContext
    ) -> UsageSnapshot:
        result = await self.deps.http.get(
            self.settings.codex_dashboard_url,
            headers={**_HEADERS, "Cookie": candidate.header},
        )
        if result.status in (401, 403):
            raise InvalidCredentialsError(compose_api_error(result.status, result.body))
        if not result.ok:
            raise APIError(compose_api_error(result.status, result.body), status=result.status)

        html = result.body
        auth_status = dashboard.parse_auth_status(html)
        if auth_status is not None and auth_status != "logged_in":
            raise NotLoggedInError(f"ChatGPT session is not logged in ({auth_status})")

        body = dashboard.body_text_from_html(html)
        limits = dashboard.parse_rate_limits(body)
        code_review = dashboard.parse_code_review_remaining_percent(body)
        credits = dashboard.parse_credits_remaining(body)
        email = dashboard.parse_signed_in_email(html)

        if limits.primary is None and limits.secondary is None and code_review is None and credits is None:
            if email is None:
                raise NotLoggedInError("ChatGPT dashboard did not show a signed-in session")
            raise ParseFailedError("Missing Codex usage data.")

        events = dashboard.parse_credit_events(dashboard.parse_credit_rows_from_html(html))
        return UsageSnapshot(
            primary=limits.primary,
            secondary=limits.secondary,
            tertiary=(
                RateWindow(used_percent=100.0 - code_review)
                if code_review is not None
                else None
            ),
            identity=ProviderIdentity(
                provider=self.provider,
                account_email=email,
                login_method=dashboard.parse_plan(html),
            ),
            credits_remaining=credits,
            daily_breakdown=dashboard.make_daily_breakdown(
                events, self.settings.daily_breakdown_max_days
            ),
            updated_at=ctx.now,
        )
