# src/core/errors.py — v1
"""Shared error taxonomy for every provider, store and runner.

One hierarchy with a provider tag instead of one error enum per provider.
Messages are user-facing and must never contain tokens or cookie values.
"""

from __future__ import annotations


class UsageError(Exception):
    """Base class for all fetch / credential / runner failures."""

    retryable_by_default = False

    def __init__(self, message: str, provider: str | None = None) -> None:
        self.message = message
        self.provider = provider
        super().__init__(message)

    def with_provider(self, provider: str) -> UsageError:
        """Tag the error with a provider if it is not tagged yet."""
        if self.provider is None:
            self.provider = provider
        return self

    def __str__(self) -> str:
        return self.message


class ParseFailedError(UsageError):
    """Payload did not match any known shape."""

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(message, provider)


class APIError(UsageError):
    """Remote returned a non-2xx status (or an API-level failure envelope)."""

    def __init__(
        self, message: str, status: int | None = None, provider: str | None = None
    ) -> None:
        self.status = status
        super().__init__(message, provider)

    @property
    def is_server_error(self) -> bool:
        return self.status is not None and self.status >= 500


class TimedOutError(UsageError):
    """Operation exceeded its deadline."""

    retryable_by_default = True

    def __init__(
        self, operation: str, timeout_s: float, provider: str | None = None
    ) -> None:
        self.operation = operation
        self.timeout_s = timeout_s
        super().__init__(f"{operation} timed out after {timeout_s:g}s", provider)


class NonZeroExitError(UsageError):
    """External process exited with a non-zero status."""

    def __init__(
        self,
        label: str,
        status: int,
        stderr: str = "",
        provider: str | None = None,
    ) -> None:
        self.label = label
        self.status = status
        self.stderr = stderr
        super().__init__(f"{label} exited with status {status}", provider)


class ProcessLaunchError(UsageError):
    """External process could not be started."""


class AccessDeniedError(UsageError):
    """Definite denial from the OS credential vault (user cancel, no access)."""


class NoCandidatesError(UsageError):
    """Retry runner was handed an empty candidate list."""

    def __init__(self, provider: str | None = None) -> None:
        super().__init__("No candidates to try", provider)


class NotLoggedInError(UsageError):
    """No usable session or credentials were found."""


class InvalidCredentialsError(UsageError):
    """Credentials were found but rejected (expired cookie, revoked key)."""


class NetworkError(UsageError):
    """Transport-level failure (DNS, connection reset, TLS)."""

    retryable_by_default = True
