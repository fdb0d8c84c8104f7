# src/parsers/redaction.py — v1
"""Redaction of secrets in response bodies before they reach a log line."""

from __future__ import annotations

import re

MAX_SUMMARY_LENGTH = 240
MAX_DEBUG_BODY_LENGTH = 2000

_SECRET_FIELDS = r"(?:api_?key|authorization|token|access_token|refresh_token)"

_REPLACEMENTS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._\-]+"), r"\1[REDACTED]"),
    (re.compile(r"(?i)(sk-or-v1-)[A-Za-z0-9._\-]+"), r"\1[REDACTED]"),
    (
        re.compile(r'(?i)("' + _SECRET_FIELDS + r'"\s*:\s*")([^"]+)(")'),
        r"\1[REDACTED]\3",
    ),
    (
        re.compile(r"(?i)(" + _SECRET_FIELDS + r"\s*[=:]\s*)([^,\s]+)"),
        r"\1[REDACTED]",
    ),
]

_WHITESPACE = re.compile(r"\s+")


def redact_sensitive(text: str) -> str:
    """Mask bearer tokens, OpenRouter keys and token-like JSON/form fields."""
    for pattern, replacement in _REPLACEMENTS:
        text = pattern.sub(replacement, text)
    return text


def _collapse(body: str, limit: int) -> str:
    collapsed = _WHITESPACE.sub(" ", redact_sensitive(body)).strip()
    if len(collapsed) <= limit:
        return collapsed
    return f"{collapsed[:limit]}… [truncated]"


def sanitized_body_summary(body: bytes | str) -> str:
    """One-line redacted summary of an error body, truncated for logs."""
    if not body:
        return "empty body"
    if isinstance(body, bytes):
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError:
            return f"non-text body ({len(body)} bytes)"
        size = len(body)
    else:
        text = body
        size = len(body.encode("utf-8"))
    summary = _collapse(text, MAX_SUMMARY_LENGTH)
    return summary or f"non-text body ({size} bytes)"


def redacted_debug_body(body: str) -> str | None:
    """Longer redacted body for DEBUG logging; None when nothing is left."""
    return _collapse(body, MAX_DEBUG_BODY_LENGTH) or None
