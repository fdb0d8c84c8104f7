# src/core/models.py — v2
"""Shared Pydantic domain models used across modules.

No module redefines these types: enums, rate windows, usage snapshots and the
per-fetch context all come from core.models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# === ENUMERATIONS ===

UsageProvider = Literal["codex", "claude", "ollama", "openrouter", "zai"]

ALL_PROVIDERS: tuple[str, ...] = ("codex", "claude", "ollama", "openrouter", "zai")

CredentialReadStrategy = Literal["legacy", "experimental"]

PromptPolicy = Literal["never", "only_on_user_action", "always"]

InteractionContext = Literal["foreground", "background"]


# === USAGE MODELS ===


class RateWindow(BaseModel):
    """One quota accounting period (5-hour session, weekly, monthly...)."""

    model_config = ConfigDict(frozen=True)

    used_percent: float
    window_minutes: int | None = None
    resets_at: datetime | None = None
    reset_description: str | None = None

    @field_validator("used_percent")
    @classmethod
    def clamp_used_percent(cls, v: float) -> float:
        """Keep used_percent inside [0, 100]."""
        return min(100.0, max(0.0, float(v)))

    @property
    def remaining_percent(self) -> float:
        return 100.0 - self.used_percent


class ProviderIdentity(BaseModel):
    """Who the snapshot belongs to, as far as the provider tells us."""

    model_config = ConfigDict(frozen=True)

    provider: str
    account_email: str | None = None
    account_organization: str | None = None
    login_method: str | None = None


# === CREDIT EVENTS (OpenAI dashboard) ===


class CreditEvent(BaseModel):
    """A single row of the credit usage table."""

    model_config = ConfigDict(frozen=True)

    date: datetime
    service: str
    credits_used: float


class ServiceCredits(BaseModel):
    """Credits consumed by one service on one day."""

    model_config = ConfigDict(frozen=True)

    service: str
    credits_used: float


class DailyCreditBreakdown(BaseModel):
    """Per-day credit totals grouped by service."""

    model_config = ConfigDict(frozen=True)

    day: str  # YYYY-MM-DD, UTC
    services: list[ServiceCredits]
    total_credits_used: float


# === SNAPSHOT ===


class UsageSnapshot(BaseModel):
    """Normalized result of one fetch cycle for one provider."""

    model_config = ConfigDict(frozen=True)

    primary: RateWindow | None = None
    secondary: RateWindow | None = None
    tertiary: RateWindow | None = None
    identity: ProviderIdentity | None = None
    credits_remaining: float | None = None
    daily_breakdown: list[DailyCreditBreakdown] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def highest_used_percent(self) -> float | None:
        """Largest used_percent across the available windows."""
        values = [
            w.used_percent
            for w in (self.primary, self.secondary, self.tertiary)
            if w is not None
        ]
        return max(values) if values else None


# === FETCH CONTEXT ===


@dataclass(frozen=True)
class FetchContext:
    """Per-call-chain state handed to every fetcher.

    Passed explicitly down the fetch path so concurrent provider fetches never
    share an interaction flag.
    """

    interaction: InteractionContext = "background"
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_user_initiated(self) -> bool:
        return self.interaction == "foreground"
