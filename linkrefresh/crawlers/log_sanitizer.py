"""Redaction helpers for structured log payloads.

Bookmarked URLs are user input and regularly carry credentials in their
userinfo part or in query strings (``?token=...``); everything passed through
``extra=`` goes through these helpers first.
"""

from __future__ import annotations

import re
from typing import Any, Optional

_REDACTED_VALUE = "***REDACTED***"
_SENSITIVE_KEYS = (
    "authorization",
    "token",
    "api_key",
    "apikey",
    "secret",
    "password",
    "cookie",
    "session",
)
_PAYLOAD_KEYS = ("body", "html", "content", "payload", "response")
_MAX_TEXT_CHARS = 500
_TOKEN_PATTERNS = (
    re.compile(r"(?i)(bearer\s+)[^\s,;]+"),
    re.compile(r"(?i)([?&](?:access_)?token=)[^&\s]+"),
    re.compile(r"(?i)([?&]api[_-]?key=)[^&\s]+"),
    re.compile(r"(?i)([?&](?:client_)?secret=)[^&\s]+"),
    re.compile(r"(?i)([?&](?:password|passwd|pwd)=)[^&\s]+"),
    re.compile(r"(?i)([?&]sig(?:nature)?=)[^&\s]+"),
)
_USERINFO_PATTERN = re.compile(r"(?i)(https?://)[^/@\s]+@")


def sanitize_for_log(value: Any, *, key: Optional[str] = None) -> Any:
    """Return a recursively sanitized copy of log payloads."""

    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            field = str(raw_key)
            if _contains_keyword(field, _SENSITIVE_KEYS):
                sanitized[field] = _REDACTED_VALUE
                continue
            sanitized[field] = sanitize_for_log(raw_value, key=field)
        return sanitized

    if isinstance(value, (list, tuple, set)):
        return [sanitize_for_log(item, key=key) for item in value]

    if isinstance(value, str):
        if key and _contains_keyword(key, _PAYLOAD_KEYS):
            return _redact_payload(value)
        return _truncate(_redact_text(value))

    return value


def sanitize_log_extra(**kwargs: Any) -> dict[str, Any]:
    """Helper for `extra=` payloads in structured logging."""

    return {key: sanitize_for_log(value, key=key) for key, value in kwargs.items()}


def _contains_keyword(field_name: str, keywords: tuple[str, ...]) -> bool:
    lowered = field_name.lower()
    return any(keyword in lowered for keyword in keywords)


def _redact_payload(raw: str) -> str:
    if not raw.strip():
        return ""
    return f"<redacted payload ({len(raw)} chars)>"


def _redact_text(raw: str) -> str:
    redacted = _USERINFO_PATTERN.sub(rf"\1{_REDACTED_VALUE}@", raw)
    for pattern in _TOKEN_PATTERNS:
        redacted = pattern.sub(rf"\1{_REDACTED_VALUE}", redacted)
    return redacted


def _truncate(raw: str) -> str:
    if len(raw) <= _MAX_TEXT_CHARS:
        return raw
    return raw[:_MAX_TEXT_CHARS] + "..."
