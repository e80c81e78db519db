"""Redaction helpers for log lines and CLI output."""

from __future__ import annotations

import re
from typing import Any

SENSITIVE_KEYS = {
    "session_cookie",
    "cookie",
    "csrf_token",
    "csrftoken",
    "x-csrf-token",
    "token",
}

_KEY_VALUE_RE = re.compile(
    r"([\"']?(?:session_cookie|csrf_?token|x-csrf-token|token)[\"']?\s*[:=]\s*[\"']?)([^\"'\s,}&;]+)",
    flags=re.IGNORECASE,
)
_COOKIE_RE = re.compile(r"((?:connect\.sid|sid)=)([^;\s]+)", flags=re.IGNORECASE)


def redact_text(text: str) -> str:
    """Redact cookie and CSRF token fragments from unstructured text."""

    rendered = str(text)
    rendered = _COOKIE_RE.sub(r"\1[REDACTED]", rendered)
    rendered = _KEY_VALUE_RE.sub(r"\1[REDACTED]", rendered)
    return rendered


def redact_mapping(obj: dict[str, Any]) -> dict[str, Any]:
    """Deep redact mapping values for known sensitive keys."""

    redacted: dict[str, Any] = {}
    for key, value in obj.items():
        lower_key = str(key).lower()
        if lower_key in SENSITIVE_KEYS:
            redacted[key] = "[REDACTED]" if value is not None else None
        elif isinstance(value, dict):
            redacted[key] = redact_mapping(value)
        elif isinstance(value, list):
            redacted[key] = [redact_mapping(item) if isinstance(item, dict) else item for item in value]
        else:
            redacted[key] = value
    return redacted
