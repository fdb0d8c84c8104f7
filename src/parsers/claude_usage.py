# src/parsers/claude_usage.py — v1
"""Parser for the Claude OAuth usage endpoint."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, ValidationError

from quotabar.core.errors import ParseFailedError
from quotabar.core.models import ProviderIdentity, RateWindow, UsageSnapshot

SESSION_MINUTES = 5 * 60
WEEKLY_MINUTES = 7 * 24 * 60


class UsageWindow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    utilization: float | None = None
    resets_at: str | None = None


class OAuthUsageResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    five_hour: UsageWindow | None = None
    seven_day: UsageWindow | None = None
    seven_day_sonnet: UsageWindow | None = None
    seven_day_opus: UsageWindow | None = None


def _parse_iso(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _reset_description(when: datetime) -> str:
    return "Resets " + when.astimezone(timezone.utc).strftime("%b %d, %H:%M UTC")


def _window(window: UsageWindow | None, minutes: int) -> RateWindow | None:
    if window is None or window.utilization is None:
        return None
    resets_at = _parse_iso(window.resets_at)
    return RateWindow(
        used_percent=window.utilization,
        window_minutes=minutes,
        resets_at=resets_at,
        reset_description=_reset_description(resets_at) if resets_at else None,
    )


def infer_plan(rate_limit_tier: str | None) -> str | None:
    """Display plan from the credentials' ``rateLimitTier``."""
    tier = (rate_limit_tier or "").lower()
    for needle, label in (
        ("max", "Claude Max"),
        ("pro", "Claude Pro"),
        ("team", "Claude Team"),
        ("enterprise", "Claude Enterprise"),
    ):
        if needle in tier:
            return label
    return None


def parse_oauth_usage(
    text: str,
    rate_limit_tier: str | None = None,
    now: datetime | None = None,
) -> UsageSnapshot:
    """Map ``five_hour`` / ``seven_day`` / model-specific windows to a snapshot.

    Raises:
        ParseFailedError: Body is not JSON or has no session window.
    """
    try:
        usage = OAuthUsageResponse.model_validate_json(text)
    except ValidationError as exc:
        raise ParseFailedError("Claude usage response could not be decoded", provider="claude") from exc

    primary = _window(usage.five_hour, SESSION_MINUTES)
    if primary is None:
        raise ParseFailedError("Claude usage response is missing session data", provider="claude")

    return UsageSnapshot(
        primary=primary,
        secondary=_window(usage.seven_day, WEEKLY_MINUTES),
        tertiary=_window(usage.seven_day_sonnet or usage.seven_day_opus, WEEKLY_MINUTES),
        identity=ProviderIdentity(provider="claude", login_method=infer_plan(rate_limit_tier)),
        updated_at=now or datetime.now(timezone.utc),
    )
