# src/parsers/openai_dashboard.py — v2
"""Parsers for the OpenAI Codex usage dashboard.

Two inputs: the raw HTML (for the ``client-bootstrap`` JSON and the credit
table) and the visible body text (for remaining-percent lines). Every parser
is total: unexpected input yields None or an empty list.
"""

from __future__ import annotations

import json
import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable

from bs4 import BeautifulSoup

from quotabar.core.models import (
    CreditEvent,
    DailyCreditBreakdown,
    RateWindow,
    ServiceCredits,
)

logger = logging.getLogger(__name__)

PLAN_LABELS: dict[str, str] = {
    "plus": "Plus",
    "pro": "Pro",
    "team": "Team",
    "free": "Free",
    "enterprise": "Enterprise",
    "business": "Business",
    "edu": "Edu",
}

FIVE_HOUR_MINUTES = 300
WEEKLY_MINUTES = 10080

_NUMBER = r"(\d[\d,]*(?:\.\d+)?)"
_CODE_REVIEW_RE = re.compile(
    r"Code review\s*:?\s*" + r"(\d+(?:\.\d+)?)\s*%\s*remaining", re.IGNORECASE
)
_CREDITS_REMAINING_RE = re.compile(r"Credits remaining\s*:?\s*" + _NUMBER, re.IGNORECASE)
# Header: a window label, then either "... limit" or nothing but an optional
# "usage", a colon and the percentage
_HEADER_TAIL = r"\b(?:.*\blimit\b|(?:\s+usage)?\s*:?\s*(?=\d|$))"
_FIVE_HOUR_HEADER_RE = re.compile(
    r"^(?:5\s*h(?:ours?|rs?)?|5[- ]hours?|five[- ]hours?)" + _HEADER_TAIL, re.IGNORECASE
)
_WEEKLY_HEADER_RE = re.compile(r"^weekly" + _HEADER_TAIL, re.IGNORECASE)
_PERCENT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*%\s*(remaining|used|left)", re.IGNORECASE)
_RESET_RE = re.compile(r"^resets?\b", re.IGNORECASE)
_CREDITS_CELL_RE = re.compile(_NUMBER + r"\s*credits?", re.IGNORECASE)
_DATE_FORMATS = ("%b %d, %Y", "%B %d, %Y", "%Y-%m-%d", "%m/%d/%Y")

# Lines inspected after a limit header before giving up on that block
_BLOCK_LOOKAHEAD = 4

# Nesting below this is not searched for plan keys
_MAX_SEARCH_DEPTH = 32


@dataclass(frozen=True)
class RateLimits:
    primary: RateWindow | None = None
    secondary: RateWindow | None = None


# === HTML / bootstrap ===


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def parse_client_bootstrap(html: str) -> dict[str, Any] | None:
    """Decode ``<script type="application/json" id="client-bootstrap">``."""
    if not html:
        return None
    script = _soup(html).find("script", id="client-bootstrap")
    if script is None:
        return None
    raw = script.string or script.get_text()
    try:
        data = json.loads(raw)
    except (TypeError, ValueError, RecursionError):
        logger.debug("client-bootstrap script is not valid JSON")
        return None
    return data if isinstance(data, dict) else None


def _dig(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _find_key(data: Any, names: tuple[str, ...], depth: int = 0) -> Any:
    """Depth-first search for the first non-empty value under any of ``names``."""
    if depth > _MAX_SEARCH_DEPTH:
        return None
    if isinstance(data, dict):
        for name in names:
            value = data.get(name)
            if isinstance(value, str) and value.strip():
                return value
        for value in data.values():
            found = _find_key(value, names, depth + 1)
            if found is not None:
                return found
    elif isinstance(data, list):
        for item in data:
            found = _find_key(item, names, depth + 1)
            if found is not None:
                return found
    return None


def parse_signed_in_email(html: str) -> str | None:
    email = _dig(parse_client_bootstrap(html), "session", "user", "email")
    if isinstance(email, str) and email.strip():
        return email.strip()
    return None


def parse_auth_status(html: str) -> str | None:
    status = _dig(parse_client_bootstrap(html), "authStatus")
    return status if isinstance(status, str) and status else None


def plan_label(raw: str) -> str:
    """Display label for a raw plan id (``plus`` -> ``Plus``)."""
    key = raw.strip().lower()
    if key in PLAN_LABELS:
        return PLAN_LABELS[key]
    return " ".join(part.capitalize() for part in re.split(r"[\s_\-]+", key) if part)


def parse_plan(html: str) -> str | None:
    raw = _find_key(parse_client_bootstrap(html), ("planType", "plan_type", "chatgptPlanType"))
    return plan_label(raw) if raw else None


def body_text_from_html(html: str) -> str:
    """Visible text, one element per line (scripts and styles dropped)."""
    soup = _soup(html)
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    return soup.get_text("\n", strip=True)


def parse_credit_rows_from_html(html: str) -> list[list[str]]:
    """Cell texts of every table row that has data cells."""
    rows: list[list[str]] = []
    for tr in _soup(html).find_all("tr"):
        cells = [td.get_text(" ", strip=True) for td in tr.find_all("td")]
        if cells:
            rows.append(cells)
    return rows


# === Body text ===


def _to_float(text: str) -> float | None:
    try:
        return float(text.replace(",", ""))
    except ValueError:
        return None


def parse_code_review_remaining_percent(body: str) -> float | None:
    """``Code review 42% remaining`` (same line or next line). First match wins."""
    match = _CODE_REVIEW_RE.search(body or "")
    return _to_float(match.group(1)) if match else None


def parse_credits_remaining(body: str) -> float | None:
    match = _CREDITS_REMAINING_RE.search(body or "")
    return _to_float(match.group(1)) if match else None


def _used_percent(line: str) -> float | None:
    match = _PERCENT_RE.search(line)
    if not match:
        return None
    value = float(match.group(1))
    return value if match.group(2).lower() == "used" else 100.0 - value


def _parse_limit_block(lines: list[str], start: int, window_minutes: int) -> RateWindow | None:
    used = _used_percent(lines[start])
    reset: str | None = None
    for line in lines[start + 1 : start + 1 + _BLOCK_LOOKAHEAD]:
        if _FIVE_HOUR_HEADER_RE.match(line) or _WEEKLY_HEADER_RE.match(line):
            break
        if used is None:
            used = _used_percent(line)
            if used is not None:
                continue
        if reset is None and _RESET_RE.match(line):
            reset = line
    if used is None:
        return None
    return RateWindow(used_percent=used, window_minutes=window_minutes, reset_description=reset)


def parse_rate_limits(body: str) -> RateLimits:
    """5-hour (primary) and weekly (secondary) windows from the body text."""
    lines = [line.strip() for line in (body or "").splitlines() if line.strip()]
    primary: RateWindow | None = None
    secondary: RateWindow | None = None
    for index, line in enumerate(lines):
        if primary is None and _FIVE_HOUR_HEADER_RE.match(line):
            primary = _parse_limit_block(lines, index, FIVE_HOUR_MINUTES)
        elif secondary is None and _WEEKLY_HEADER_RE.match(line):
            secondary = _parse_limit_block(lines, index, WEEKLY_MINUTES)
    return RateLimits(primary=primary, secondary=secondary)


# === Credit history ===


def _parse_date(text: str) -> datetime | None:
    cleaned = " ".join(text.split())
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def parse_credit_events(rows: Iterable[list[str]]) -> list[CreditEvent]:
    """``[date, service, "N credits"]`` rows to events; malformed rows are skipped."""
    events: list[CreditEvent] = []
    for row in rows:
        if len(row) < 3:
            continue
        date = _parse_date(row[0])
        service = row[1].strip()
        match = _CREDITS_CELL_RE.search(row[2])
        if date is None or not service or not match:
            continue
        credits = _to_float(match.group(1))
        if credits is None:
            continue
        events.append(CreditEvent(date=date, service=service, credits_used=credits))
    return events


def make_daily_breakdown(
    events: Iterable[CreditEvent], max_days: int = 30
) -> list[DailyCreditBreakdown]:
    """Group events by UTC day, newest first, services by credits desc then name."""
    by_day: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
    for event in events:
        when = event.date
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        day = when.astimezone(timezone.utc).strftime("%Y-%m-%d")
        by_day[day][event.service] += event.credits_used

    breakdown: list[DailyCreditBreakdown] = []
    for day in sorted(by_day, reverse=True)[: max(0, max_days)]:
        services = sorted(
            (ServiceCredits(service=name, credits_used=total) for name, total in by_day[day].items()),
            key=lambda s: (-s.credits_used, s.service),
        )
        breakdown.append(
            DailyCreditBreakdown(
                day=day,
                services=services,
                total_credits_used=sum(s.credits_used for s in services),
            )
        )
    return breakdown
