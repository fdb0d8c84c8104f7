# tests/unit/credentials/test_unit_keychain.py — v1
"""Tests for credentials/keychain.py — security CLI mapping and the in-memory double."""

from __future__ import annotations

import pytest

from quotabar.core.errors import AccessDeniedError, NonZeroExitError, TimedOutError
from quotabar.credentials.keychain import ITEM_NOT_FOUND_EXIT, InMemoryKeychain, SecurityCLIKeychain
from quotabar.runner.subprocess_runner import SubprocessResult, SubprocessRunner


class _FakeRunner(SubprocessRunner):
    """Records invocations and answers with a canned result."""

    def __init__(self, status: int = 0, stdout: str = "", stderr: str = "", raises=None) -> None:
        self.calls: list[dict] = []
        self._result = SubprocessResult(status, stdout, stderr, 1.0)
        self._raises = raises

    async def run(self, binary, args, timeout, env=None, label="", check=True, input=None):
        self.calls.append({"binary": str(binary), "args": list(args), "timeout": timeout, "input": input})
        if self._raises is not None:
            raise self._raises
        if check and self._result.status != 0:
            raise NonZeroExitError(label, self._result.status, self._result.stderr)
        return self._result


class TestSecurityCLIKeychainRead:
    @pytest.mark.asyncio
    async def test_found_strips_newline(self):
        runner = _FakeRunner(stdout='{"claudeAiOauth":{}}\n')
        kc = SecurityCLIKeychain(runner=runner, binary="/usr/bin/security")
        assert await kc.read_generic_password("svc", "acct") == '{"claudeAiOauth":{}}'
        assert runner.calls[0]["args"] == ["find-generic-password", "-s", "svc", "-a", "acct", "-w"]

    @pytest.mark.asyncio
    async def test_not_found(self):
        kc = SecurityCLIKeychain(runner=_FakeRunner(status=ITEM_NOT_FOUND_EXIT))
        assert await kc.read_generic_password("svc") is None

    @pytest.mark.asyncio
    async def test_user_cancel_is_access_denied(self):
        runner = _FakeRunner(status=128, stderr="security: User canceled the operation.")
        with pytest.raises(AccessDeniedError):
            await SecurityCLIKeychain(runner=runner).read_generic_password("svc")

    @pytest.mark.asyncio
    async def test_other_failure_is_non_zero_exit(self):
        runner = _FakeRunner(status=1, stderr="boom")
        with pytest.raises(NonZeroExitError) as info:
            await SecurityCLIKeychain(runner=runner).read_generic_password("svc")
        assert info.value.status == 1

    @pytest.mark.asyncio
    async def test_timeout_override(self):
        runner = _FakeRunner(stdout="x")
        await SecurityCLIKeychain(runner=runner, timeout=1.5).read_generic_password("svc", timeout=0.3)
        assert runner.calls[0]["timeout"] == 0.3


class TestSecurityCLIKeychainWrite:
    @pytest.mark.asyncio
    async def test_secret_goes_through_stdin_as_hex(self):
        runner = _FakeRunner()
        kc = SecurityCLIKeychain(runner=runner)
        await kc.add_generic_password("svc", "cookie.codex", "s3cret", label="QuotaBar")
        call = runner.calls[0]
        assert call["args"] == ["-i"]
        assert "s3cret" not in " ".join(call["args"])
        command = call["input"].decode()
        assert "add-generic-password -U" in command
        assert b"s3cret".hex() in command
        assert "s3cret" not in command

    @pytest.mark.asyncio
    async def test_denied_write(self):
        runner = _FakeRunner(status=1, stderr="User interaction is not allowed.")
        with pytest.raises(AccessDeniedError):
            await SecurityCLIKeychain(runner=runner).add_generic_password("svc", "a", "s")

    @pytest.mark.asyncio
    async def test_delete_missing_is_ok(self):
        await SecurityCLIKeychain(runner=_FakeRunner(status=ITEM_NOT_FOUND_EXIT)).delete_generic_password("svc", "a")


class TestSecurityCLIKeychainPreflight:
    @pytest.mark.parametrize(
        ("status", "stderr", "expected"),
        [
            (0, "", "allowed"),
            (ITEM_NOT_FOUND_EXIT, "", "not_found"),
            (51, "User interaction is not allowed.", "interaction_required"),
            (1, "weird", "failure"),
        ],
    )
    @pytest.mark.asyncio
    async def test_outcomes(self, status, stderr, expected):
        runner = _FakeRunner(status=status, stderr=stderr)
        assert await SecurityCLIKeychain(runner=runner).preflight("svc") == expected
        assert "-w" not in runner.calls[0]["args"]

    @pytest.mark.asyncio
    async def test_timeout_is_failure(self):
        runner = _FakeRunner(raises=TimedOutError("security preflight", 1.5))
        assert await SecurityCLIKeychain(runner=runner).preflight("svc") == "failure"


class TestInMemoryKeychain:
    @pytest.mark.asyncio
    async def test_add_read_delete(self):
        kc = InMemoryKeychain()
        await kc.add_generic_password("svc", "acct", "secret")
        assert await kc.read_generic_password("svc", "acct") == "secret"
        assert await kc.read_generic_password("svc") == "secret"
        await kc.delete_generic_password("svc", "acct")
        assert await kc.read_generic_password("svc", "acct") is None

    @pytest.mark.asyncio
    async def test_deny_reads(self):
        kc = InMemoryKeychain()
        kc.deny_reads = True
        with pytest.raises(AccessDeniedError):
            await kc.read_generic_password("svc")

    @pytest.mark.asyncio
    async def test_preflight(self):
        kc = InMemoryKeychain()
        assert await kc.preflight("svc") == "not_found"
        kc.items[("svc", "a")] = "x"
        assert await kc.preflight("svc") == "allowed"
        kc.preflight_override = "interaction_required"
        assert await kc.preflight("svc") == "interaction_required"
        assert kc.preflight_count == 3
