# src/logging/context.py — v2
"""Contextual logging support: attach provider, interaction and candidate to log records.

Context variables are copied into every asyncio task, so the values set inside
one provider's fetch task never leak into another provider's task.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

_provider: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "provider", default=None
)
_interaction: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "interaction", default=None
)
_candidate: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "candidate", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    provider: str | None = None
    interaction: str | None = None
    candidate: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        provider=_provider.get(),
        interaction=_interaction.get(),
        candidate=_candidate.get(),
    )


def set_fetch_context(provider: str, interaction: str) -> None:
    """Set fetch-level context (called once at the top of a provider task)."""
    _provider.set(provider)
    _interaction.set(interaction)
    _candidate.set(None)


def set_candidate_context(candidate: str | None) -> None:
    """Set the label of the candidate currently being attempted."""
    _candidate.set(candidate)


def clear_context() -> None:
    """Reset all context variables."""
    _provider.set(None)
    _interaction.set(None)
    _candidate.set(None)
