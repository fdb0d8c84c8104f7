# src/parsers/http_errors.py — v2
"""Human-readable messages for non-2xx API responses.

HTML error pages contribute their ``<title>``; JSON envelopes contribute
``detail`` (or ``message`` / ``error`` when those are plain strings).
"""

from __future__ import annotations

import json
import re

_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_JSON_MESSAGE_FIELDS = ("detail", "message", "error")


def extract_api_error_message(body: str) -> str | None:
    """Best-effort message from an error body, or None."""
    text = body.strip()
    if not text:
        return None

    match = _TITLE_RE.search(text)
    if match:
        title = " ".join(match.group(1).split())
        if title:
            return title

    try:
        payload = json.loads(text)
    except (ValueError, RecursionError):
        return None
    if not isinstance(payload, dict):
        return None
    for field in _JSON_MESSAGE_FIELDS:
        value = payload.get(field)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, dict):
            nested = value.get("message")
            if isinstance(nested, str) and nested.strip():
                return nested.strip()
    return None


def compose_api_error(status: int, body: str) -> str:
    """``"HTTP <status>: <message>"``, or ``"HTTP <status>"`` with no message."""
    message = extract_api_error_message(body)
    if message:
        return f"HTTP {status}: {message}"
    return f"HTTP {status}"
