# src/providers/browser_cookies.py — v1
"""Optional browser cookie import (``pip install 'quotabar[browser]'``).

browser_cookie3 decrypts Chromium cookie stores through native libraries
that can crash the interpreter, so the import runs in a child process via
the subprocess runner and only JSON crosses the boundary.
"""

from __future__ import annotations

import importlib.util
import json
import logging
import sys
from dataclasses import dataclass

from quotabar.core.errors import UsageError
from quotabar.runner.subprocess_runner import SubprocessRunner

logger = logging.getLogger(__name__)

DEFAULT_BROWSERS = (
    "chrome", "arc", "brave", "edge", "chromium", "firefox", "librewolf", "safari",
)

_IMPORT_SCRIPT = r"""
import json, sys
import browser_cookie3

domain = sys.argv[1]
out = []
for name in sys.argv[2:]:
    loader = getattr(browser_cookie3, name, None)
    if loader is None:
        continue
    try:
        jar = loader(domain_name=domain)
    except Exception as exc:
        print(f"{name}: {type(exc).__name__}", file=sys.stderr)
        continue
    cookies = {c.name: c.value for c in jar if c.value}
    if cookies:
        out.append({"browser": name, "cookies": cookies})
print(json.dumps(out))
"""


@dataclass(frozen=True)
class BrowserCookieSession:
    """Cookies found for one domain in one browser profile."""

    source_label: str
    cookies: dict[str, str]

    @property
    def header(self) -> str:
        return "; ".join(f"{name}={value}" for name, value in self.cookies.items())


def browser_import_available() -> bool:
    return importlib.util.find_spec("browser_cookie3") is not None


class BrowserCookieImporter:
    """Reads cookies for a domain from installed browsers."""

    def __init__(
        self,
        runner: SubprocessRunner | None = None,
        browsers: tuple[str, ...] = DEFAULT_BROWSERS,
        timeout: float = 60.0,
    ) -> None:
        self._runner = runner or SubprocessRunner()
        self._browsers = browsers
        self._timeout = timeout

    async def import_sessions(self, domain: str) -> list[BrowserCookieSession]:
        """Every browser holding cookies for ``domain``, in browser order.

        Raises:
            ImportError: browser-cookie3 is not installed.
        """
        if not browser_import_available():
            raise ImportError(
                "browser-cookie3 required for browser cookie import: "
                "pip install 'quotabar[browser]'"
            )
        try:
            result = await self._runner.run(
                sys.executable,
                ["-c", _IMPORT_SCRIPT, domain, *self._browsers],
                self._timeout,
                label="browser cookie import",
            )
        except UsageError as exc:
            logger.warning("Browser cookie import failed for %s: %s", domain, exc)
            return []
        if result.stderr.strip():
            logger.debug("Browser cookie import notes: %s", result.stderr.strip()[:500])
        try:
            payload = json.loads(result.stdout.strip() or "[]")
        except json.JSONDecodeError:
            logger.warning("Browser cookie import returned unreadable output")
            return []
        return [
            BrowserCookieSession(source_label=item["browser"].title(), cookies=dict(item["cookies"]))
            for item in payload
            if isinstance(item, dict) and item.get("cookies")
        ]
