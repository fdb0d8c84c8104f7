# src/parsers/zai_quota.py — v1
"""Parser for the z.ai quota endpoint (``api/monitor/usage/quota/limit``).

Response envelope: ``{code, msg, success, data: {limits: [...], planName}}``.
In a limit entry ``usage`` is the allowance and ``currentValue`` the amount
consumed; ``unit`` encodes the window (1 = days, 3 = hours, 5 = minutes).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from quotabar.core.errors import APIError, ParseFailedError
from quotabar.core.models import ProviderIdentity, RateWindow, UsageSnapshot

QUOTA_API_PATH = "api/monitor/usage/quota/limit"

LimitType = Literal["TOKENS_LIMIT", "TIME_LIMIT"]

_UNIT_MINUTES = {1: 24 * 60, 3: 60, 5: 1}
_UNIT_LABELS = {1: "day", 3: "hour", 5: "minute"}


class ZaiLimit(BaseModel):
    """One limit entry."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: str
    unit: int = 0
    number: int = 0
    usage: int = 0
    current_value: int = Field(default=0, alias="currentValue")
    remaining: int = 0
    percentage: float = 0.0
    next_reset_time: int | None = Field(default=None, alias="nextResetTime")

    @property
    def used_percent(self) -> float:
        """Computed from counters when present, else the server percentage."""
        if self.usage > 0:
            used = max(self.usage - self.remaining, self.current_value)
            used = max(0, min(self.usage, used))
            return min(100.0, max(0.0, used / self.usage * 100.0))
        return self.percentage

    @property
    def window_minutes(self) -> int | None:
        if self.number <= 0 or self.unit not in _UNIT_MINUTES:
            return None
        return self.number * _UNIT_MINUTES[self.unit]

    @property
    def window_label(self) -> str | None:
        if self.number <= 0 or self.unit not in _UNIT_LABELS:
            return None
        unit = _UNIT_LABELS[self.unit]
        return f"{self.number} {unit if self.number == 1 else unit + 's'} window"

    @property
    def resets_at(self) -> datetime | None:
        if self.next_reset_time is None:
            return None
        return datetime.fromtimestamp(self.next_reset_time / 1000.0, tz=timezone.utc)

    def to_window(self) -> RateWindow:
        description = self.window_label
        if description is None and self.type == "TIME_LIMIT":
            description = "Monthly"
        return RateWindow(
            used_percent=self.used_percent,
            window_minutes=self.window_minutes if self.type == "TOKENS_LIMIT" else None,
            resets_at=self.resets_at,
            reset_description=description,
        )


class _QuotaData(BaseModel):
    limits: list[ZaiLimit] = Field(default_factory=list)
    plan_name: str | None = Field(default=None, alias="planName")
    plan: str | None = None
    plan_type: str | None = None
    package_name: str | None = Field(default=None, alias="packageName")


class _QuotaResponse(BaseModel):
    code: int = 0
    msg: str = ""
    success: bool = False
    data: _QuotaData | None = None


class ZaiQuota(BaseModel):
    """Decoded quota: token window, time (MCP) window and plan name."""

    model_config = ConfigDict(frozen=True)

    token_limit: ZaiLimit | None = None
    time_limit: ZaiLimit | None = None
    plan_name: str | None = None

    def to_snapshot(self, now: datetime | None = None) -> UsageSnapshot:
        primary_limit = self.token_limit or self.time_limit
        secondary_limit = self.time_limit if self.token_limit and self.time_limit else None
        return UsageSnapshot(
            primary=primary_limit.to_window() if primary_limit else RateWindow(used_percent=0),
            secondary=secondary_limit.to_window() if secondary_limit else None,
            identity=ProviderIdentity(provider="zai", login_method=self.plan_name),
            updated_at=now or datetime.now(timezone.utc),
        )


def parse_quota_response(text: str) -> ZaiQuota:
    """Decode the quota envelope.

    Raises:
        ParseFailedError: Body is not the expected JSON shape.
        APIError: Envelope reports failure (``success`` false or ``code`` != 200).
    """
    try:
        response = _QuotaResponse.model_validate_json(text)
    except ValidationError as exc:
        raise ParseFailedError(
            f"Failed to parse z.ai response ({exc.error_count()} errors)", provider="zai"
        ) from exc

    if not (response.success and response.code == 200):
        raise APIError(f"z.ai API error: {response.msg or 'unknown error'}", provider="zai")
    if response.data is None:
        raise ParseFailedError("Failed to parse z.ai response: missing data", provider="zai")

    token_limit: ZaiLimit | None = None
    time_limit: ZaiLimit | None = None
    for limit in response.data.limits:
        if limit.type == "TOKENS_LIMIT":
            token_limit = limit
        elif limit.type == "TIME_LIMIT":
            time_limit = limit

    data = response.data
    raw_plan = next(
        (p for p in (data.plan_name, data.plan, data.plan_type, data.package_name) if p), None
    )
    plan = raw_plan.strip() if raw_plan else None
    return ZaiQuota(token_limit=token_limit, time_limit=time_limit, plan_name=plan or None)
