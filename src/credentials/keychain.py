# src/credentials/keychain.py — v1
"""Generic-password keychain primitive.

``SecurityCLIKeychain`` drives ``/usr/bin/security`` through the subprocess
runner; ``InMemoryKeychain`` is the test double. Secrets are written through
stdin in hex form so they never appear in the process list.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Literal

from quotabar.core.errors import AccessDeniedError, NonZeroExitError, TimedOutError
from quotabar.runner.subprocess_runner import SubprocessRunner

logger = logging.getLogger(__name__)

PreflightOutcome = Literal["allowed", "not_found", "interaction_required", "failure"]

# errSecItemNotFound as reported by the security tool
ITEM_NOT_FOUND_EXIT = 44

_DENIAL_MARKERS = (
    "user canceled",
    "user cancelled",
    "interaction is not allowed",
    "interaction not allowed",
    "authorization was denied",
)


def _is_denial(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in _DENIAL_MARKERS)


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class BaseKeychain(ABC):
    """Async generic-password operations keyed by (service, account)."""

    @abstractmethod
    async def add_generic_password(
        self, service: str, account: str, secret: str, label: str | None = None
    ) -> None:
        """Create or update the item."""

    @abstractmethod
    async def read_generic_password(
        self, service: str, account: str | None = None, timeout: float | None = None
    ) -> str | None:
        """Return the secret, or None when no item exists.

        Raises:
            AccessDeniedError: The user or the OS refused access.
            TimedOutError: The read did not finish in time.
        """

    @abstractmethod
    async def delete_generic_password(self, service: str, account: str) -> None:
        """Delete the item; absent items are not an error."""

    @abstractmethod
    async def preflight(
        self, service: str, account: str | None = None
    ) -> PreflightOutcome:
        """Probe for the item without touching the secret (never prompts)."""


class SecurityCLIKeychain(BaseKeychain):
    """Keychain access via the macOS ``security`` command line tool."""

    def __init__(
        self,
        runner: SubprocessRunner | None = None,
        binary: str | Path = "/usr/bin/security",
        timeout: float = 1.5,
    ) -> None:
        self._runner = runner or SubprocessRunner()
        self._binary = str(binary)
        self._timeout = timeout

    async def add_generic_password(
        self, service: str, account: str, secret: str, label: str | None = None
    ) -> None:
        command = (
            f"add-generic-password -U -s {_quote(service)} -a {_quote(account)}"
            f" -l {_quote(label or service)} -X {secret.encode('utf-8').hex()}\n"
        )
        try:
            await self._runner.run(
                self._binary, ["-i"], self._timeout,
                label="security add-generic-password",
                input=command.encode("utf-8"),
            )
        except NonZeroExitError as exc:
            if _is_denial(exc.stderr):
                raise AccessDeniedError(f"Keychain write denied for {account}") from exc
            raise

    async def read_generic_password(
        self, service: str, account: str | None = None, timeout: float | None = None
    ) -> str | None:
        args = ["find-generic-password", "-s", service]
        if account:
            args += ["-a", account]
        args.append("-w")
        result = await self._runner.run(
            self._binary, args, timeout or self._timeout,
            label="security find-generic-password", check=False,
        )
        if result.status == 0:
            return result.stdout.rstrip("\r\n")
        if result.status == ITEM_NOT_FOUND_EXIT:
            return None
        if _is_denial(result.stderr):
            raise AccessDeniedError(f"Keychain access denied for {service}")
        raise NonZeroExitError(
            "security find-generic-password", result.status, result.stderr.strip()
        )

    async def delete_generic_password(self, service: str, account: str) -> None:
        result = await self._runner.run(
            self._binary,
            ["delete-generic-password", "-s", service, "-a", account],
            self._timeout,
            label="security delete-generic-password",
            check=False,
        )
        if result.status in (0, ITEM_NOT_FOUND_EXIT):
            return
        if _is_denial(result.stderr):
            raise AccessDeniedError(f"Keychain delete denied for {account}")
        raise NonZeroExitError(
            "security delete-generic-password", result.status, result.stderr.strip()
        )

    async def preflight(
        self, service: str, account: str | None = None
    ) -> PreflightOutcome:
        args = ["find-generic-password", "-s", service]
        if account:
            args += ["-a", account]
        try:
            result = await self._runner.run(
                self._binary, args, self._timeout,
                label="security preflight", check=False,
            )
        except TimedOutError:
            logger.warning("Keychain preflight timed out for %s", service)
            return "failure"
        if result.status == 0:
            return "allowed"
        if result.status == ITEM_NOT_FOUND_EXIT:
            return "not_found"
        if _is_denial(result.stderr):
            return "interaction_required"
        logger.warning("Keychain preflight failed for %s (status %d)", service, result.status)
        return "failure"


class InMemoryKeychain(BaseKeychain):
    """Dict-backed keychain with switches to simulate denial and prompts."""

    def __init__(self) -> None:
        self.items: dict[tuple[str, str], str] = {}
        self.deny_reads = False
        self.deny_writes = False
        self.preflight_override: PreflightOutcome | None = None
        self.read_count = 0
        self.preflight_count = 0

    async def add_generic_password(
        self, service: str, account: str, secret: str, label: str | None = None
    ) -> None:
        if self.deny_writes:
            raise AccessDeniedError(f"Keychain write denied for {account}")
        self.items[(service, account)] = secret

    async def read_generic_password(
        self, service: str, account: str | None = None, timeout: float | None = None
    ) -> str | None:
        self.read_count += 1
        if self.deny_reads:
            raise AccessDeniedError(f"Keychain access denied for {service}")
        return self._find(service, account)

    async def delete_generic_password(self, service: str, account: str) -> None:
        self.items.pop((service, account), None)

    async def preflight(
        self, service: str, account: str | None = None
    ) -> PreflightOutcome:
        self.preflight_count += 1
        if self.preflight_override is not None:
            return self.preflight_override
        return "allowed" if self._find(service, account) is not None else "not_found"

    def _find(self, service: str, account: str | None) -> str | None:
        if account is not None:
            return self.items.get((service, account))
        for (svc, _), secret in self.items.items():
            if svc == service:
                return secret
        return None
