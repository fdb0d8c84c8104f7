# src/parsers/ollama_html.py — v1
"""Parser for the ollama.com settings page (Cloud Usage panel).

Usage blocks are located by their label and read from a bounded window of
markup that follows it, so unrelated percentages further down the page are
never picked up.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

from quotabar.core.errors import NotLoggedInError, ParseFailedError
from quotabar.core.models import ProviderIdentity, RateWindow, UsageSnapshot

OllamaParseFailure = Literal["not_logged_in", "missing_usage_data"]

MISSING_USAGE_MESSAGE = "Missing Ollama usage data."

PRIMARY_USAGE_LABELS = ("Session usage", "Hourly usage")
WEEKLY_USAGE_LABEL = "Weekly usage"

# Characters of markup scanned after a usage label
_BLOCK_WINDOW = 800

_PLAN_RE = re.compile(r"Cloud Usage\s*</span>\s*<span[^>]*>([^<]+)</span>", re.DOTALL)
_EMAIL_RE = re.compile(r'id="header-email"[^>]*>([^<]+)<', re.DOTALL)
_USED_RE = re.compile(r"([0-9]+(?:\.[0-9]+)?)\s*%\s*used", re.IGNORECASE)
_WIDTH_RE = re.compile(r"width:\s*([0-9]+(?:\.[0-9]+)?)%", re.IGNORECASE)
_DATA_TIME_RE = re.compile(r'data-time="([^"]+)"')


@dataclass(frozen=True)
class UsageBlock:
    used_percent: float
    resets_at: datetime | None = None


@dataclass(frozen=True)
class OllamaUsage:
    """Everything the settings page tells us."""

    plan_name: str | None
    account_email: str | None
    session: UsageBlock | None
    weekly: UsageBlock | None

    def to_snapshot(self, now: datetime | None = None) -> UsageSnapshot:
        return UsageSnapshot(
            primary=_window(self.session),
            secondary=_window(self.weekly),
            identity=ProviderIdentity(
                provider="ollama",
                account_email=self.account_email,
                login_method=self.plan_name,
            ),
            updated_at=now or datetime.now(timezone.utc),
        )


@dataclass(frozen=True)
class ClassifiedParse:
    """Either ``usage`` or ``failure`` is set."""

    usage: OllamaUsage | None = None
    failure: OllamaParseFailure | None = None

    @property
    def ok(self) -> bool:
        return self.usage is not None


def _window(block: UsageBlock | None) -> RateWindow | None:
    if block is None:
        return None
    return RateWindow(used_percent=block.used_percent, resets_at=block.resets_at)


def _first_capture(pattern: re.Pattern[str], text: str) -> str | None:
    match = pattern.search(text)
    if not match:
        return None
    value = match.group(1).strip()
    return value or None


def _parse_iso(raw: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _parse_block(html: str, label: str) -> UsageBlock | None:
    index = html.find(label)
    if index < 0:
        return None
    window = html[index + len(label) : index + len(label) + _BLOCK_WINDOW]
    raw = _first_capture(_USED_RE, window) or _first_capture(_WIDTH_RE, window)
    if raw is None:
        return None
    when = _first_capture(_DATA_TIME_RE, window)
    return UsageBlock(used_percent=float(raw), resets_at=_parse_iso(when) if when else None)


def looks_signed_out(html: str) -> bool:
    """Heuristic: a login form with auth markers, not just the words 'sign in'."""
    lower = html.lower()

    def has(*needles: str) -> bool:
        return any(n in lower for n in needles)

    sign_in_heading = has("sign in to ollama", "log in to ollama")
    auth_endpoint = has("/api/auth/signin", "/auth/signin") or has(
        *(f'{attr}={q}/{route}{q}' for attr in ("action", "href") for route in ("login", "signin") for q in ('"', "'"))
    )
    password_field = has('type="password"', "type='password'", 'name="password"', "name='password'")
    email_field = has('type="email"', "type='email'", 'name="email"', "name='email'")
    form = "<form" in lower

    if sign_in_heading and form and (email_field or password_field or auth_endpoint):
        return True
    if form and auth_endpoint:
        return True
    return form and password_field and email_field


def parse_classified(html: str) -> ClassifiedParse:
    session = None
    for label in PRIMARY_USAGE_LABELS:
        session = _parse_block(html, label)
        if session is not None:
            break
    weekly = _parse_block(html, WEEKLY_USAGE_LABEL)

    if session is None and weekly is None:
        if looks_signed_out(html):
            return ClassifiedParse(failure="not_logged_in")
        return ClassifiedParse(failure="missing_usage_data")

    email = _first_capture(_EMAIL_RE, html)
    return ClassifiedParse(
        usage=OllamaUsage(
            plan_name=_first_capture(_PLAN_RE, html),
            account_email=email if email and "@" in email else None,
            session=session,
            weekly=weekly,
        )
    )


def parse(html: str) -> OllamaUsage:
    """Strict variant of ``parse_classified``.

    Raises:
        NotLoggedInError: The page is a sign-in page.
        ParseFailedError: No usage block could be found.
    """
    result = parse_classified(html)
    if result.usage is not None:
        return result.usage
    if result.failure == "not_logged_in":
        raise NotLoggedInError("Not logged in to Ollama.", provider="ollama")
    raise ParseFailedError(MISSING_USAGE_MESSAGE, provider="ollama")
