# src/runner/http_client.py — v1
"""Thin async HTTP runner on top of httpx.

Transport failures become ``TimedOutError`` / ``NetworkError``; every HTTP
status (including 4xx/5xx) is returned to the caller for classification.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from quotabar.core.errors import NetworkError, TimedOutError
from quotabar.version import __version__

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = f"quotabar/{__version__}"


@dataclass(frozen=True)
class HttpResult:
    """Status, decoded body and response headers of one request."""

    status: int
    body: str
    headers: Mapping[str, str] = field(default_factory=dict)
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        return json.loads(self.body)


class HttpRunner:
    """Async HTTP runner sharing one connection pool across providers.

    Args:
        timeout: Default per-request timeout in seconds.
        transport: Optional custom transport (``httpx.MockTransport`` in tests).
        user_agent: User-Agent header sent with every request.
    """

    def __init__(
        self,
        timeout: float = 15.0,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._timeout = timeout
        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": user_agent},
            follow_redirects=True,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> HttpRunner:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def request(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        *,
        params: Mapping[str, str] | None = None,
        json_body: Any = None,
    ) -> HttpResult:
        """Perform one request.

        Raises:
            TimedOutError: Connect/read/write/pool timeout.
            NetworkError: Any other transport failure.
        """
        effective = timeout if timeout is not None else self._timeout
        started = time.monotonic()
        try:
            resp = await self._client.request(
                method.upper(),
                url,
                headers=dict(headers) if headers else None,
                params=dict(params) if params else None,
                json=json_body,
                timeout=effective,
            )
        except httpx.TimeoutException as exc:
            raise TimedOutError(f"{method.upper()} {_host(url)}", effective) from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"{method.upper()} {_host(url)} failed: {type(exc).__name__}") from exc

        logger.debug(
            "%s %s -> %d in %.0fms",
            method.upper(), _host(url), resp.status_code,
            (time.monotonic() - started) * 1000,
        )
        return HttpResult(
            status=resp.status_code,
            body=resp.text,
            headers=dict(resp.headers),
            url=str(resp.url),
        )

    async def get(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> HttpResult:
        return await self.request("GET", url, headers=headers, timeout=timeout)


def _host(url: str) -> str:
    # Query strings can carry keys; log scheme + host + path only
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError):
        return "<invalid url>"
    return f"{parsed.scheme}://{parsed.host}{parsed.path}"
