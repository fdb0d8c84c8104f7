# src/runner/subprocess_runner.py — v1
"""Bounded external process execution.

Both pipes are drained concurrently by ``communicate()`` so large outputs
cannot deadlock the child. Each child runs in its own session; on timeout the
whole process group is terminated (SIGTERM, short grace, then SIGKILL).
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from quotabar.core.errors import NonZeroExitError, ProcessLaunchError, TimedOutError

logger = logging.getLogger(__name__)

_KILL_GRACE_S = 0.4


@dataclass(frozen=True)
class SubprocessResult:
    """Outcome of a finished process."""

    status: int
    stdout: str
    stderr: str
    duration_ms: float

    @property
    def ok(self) -> bool:
        return self.status == 0


class SubprocessRunner:
    """Runs a binary with a deadline and classifies the outcome."""

    async def run(
        self,
        binary: str | os.PathLike[str],
        args: Sequence[str],
        timeout: float,
        env: Mapping[str, str] | None = None,
        label: str = "",
        check: bool = True,
        input: bytes | None = None,
    ) -> SubprocessResult:
        """Run ``binary`` with ``args`` and wait at most ``timeout`` seconds.

        Args:
            binary: Executable path.
            args: Arguments (not including the binary).
            timeout: Deadline in seconds.
            env: Replacement environment (None = inherit).
            label: Short name used in logs and error messages.
            check: Raise NonZeroExitError on non-zero exit.
            input: Bytes written to stdin (None = stdin is /dev/null).

        Raises:
            ProcessLaunchError: Binary missing or not executable.
            TimedOutError: Deadline exceeded; the process group was killed.
            NonZeroExitError: Non-zero exit while ``check`` is set.
        """
        label = label or os.path.basename(str(binary))
        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                str(binary),
                *args,
                stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=dict(env) if env is not None else None,
                start_new_session=True,
            )
        except OSError as exc:
            raise ProcessLaunchError(f"{label}: failed to launch ({exc.strerror or exc})") from exc

        try:
            out, err = await asyncio.wait_for(proc.communicate(input), timeout=timeout)
        except asyncio.TimeoutError:
            await self._terminate_group(proc, label)
            logger.warning("%s timed out after %.1fs", label, timeout)
            raise TimedOutError(label, timeout) from None
        except asyncio.CancelledError:
            await self._terminate_group(proc, label)
            raise

        duration_ms = (time.monotonic() - started) * 1000
        result = SubprocessResult(
            status=proc.returncode if proc.returncode is not None else -1,
            stdout=out.decode("utf-8", errors="replace"),
            stderr=err.decode("utf-8", errors="replace"),
            duration_ms=duration_ms,
        )
        logger.debug(
            "%s exited %d in %.0fms (stdout=%d bytes)",
            label, result.status, duration_ms, len(out),
        )
        if check and result.status != 0:
            raise NonZeroExitError(label, result.status, result.stderr.strip())
        return result

    @staticmethod
    async def _terminate_group(proc: asyncio.subprocess.Process, label: str) -> None:
        if proc.returncode is not None:
            return
        try:
            pgid = os.getpgid(proc.pid)
        except ProcessLookupError:
            return

        for sig in (signal.SIGTERM, signal.SIGKILL):
            try:
                os.killpg(pgid, sig)
            except ProcessLookupError:
                return
            try:
                await asyncio.wait_for(proc.wait(), timeout=_KILL_GRACE_S)
                return
            except asyncio.TimeoutError:
                logger.debug("%s ignored %s", label, sig.name)
