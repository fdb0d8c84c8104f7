# src/providers/retry_runner.py — v1
"""Sequential candidate runner shared by every provider.

Candidates (cookie sources, hosts, credential readers...) are attempted in
order. The first success wins; a non-retryable error ends the run at once;
after the last candidate the last error is re-raised. No backoff: each
candidate is a different source, not a repeat of the same call.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Sequence, TypeVar

from quotabar.core.errors import NoCandidatesError

logger = logging.getLogger(__name__)

C = TypeVar("C")
R = TypeVar("R")


async def run_candidates(
    candidates: Sequence[C],
    should_retry: Callable[[Exception], bool],
    attempt: Callable[[C], Awaitable[R]],
    on_retry: Callable[[C, Exception], None] | None = None,
) -> R:
    """Attempt ``candidates`` in order until one succeeds.

    Args:
        candidates: Ordered candidate list.
        should_retry: Decides whether an error lets the next candidate run.
        attempt: Async callable performing one attempt.
        on_retry: Observability hook called before moving on; its own
            exceptions are logged and ignored.

    Returns:
        Result of the first successful attempt.

    Raises:
        NoCandidatesError: ``candidates`` is empty (nothing was attempted).
        Exception: The first non-retryable error, or the last error.
    """
    if not candidates:
        raise NoCandidatesError()

    last_index = len(candidates) - 1
    for index, candidate in enumerate(candidates):
        try:
            return await attempt(candidate)
        except Exception as exc:
            if index == last_index or not should_retry(exc):
                raise
            logger.debug(
                "Candidate %d/%d failed (%s), trying next",
                index + 1, len(candidates), type(exc).__name__,
            )
            if on_retry is not None:
                try:
                    on_retry(candidate, exc)
                except Exception:
                    logger.exception("on_retry hook failed")

    # Unreachable: the loop either returns or raises on the last candidate
    raise NoCandidatesError()
