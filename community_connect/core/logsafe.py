from __future__ import annotations

import logging
from typing import Any

_SENSITIVE_FIELDS = (
    "sessionid",
    "session",
    "email",
    "access_token",
    "refresh_token",
    "id_token",
    "password",
    "secret",
    "key",
    "token",
    "authorization",
    "cookie",
    "first_name",
    "last_name",
)

REDACTED = "[REDACTED]"


# Matched exactly; as a substring it would catch "subcategory".
_EXACT_FIELDS = ("sub",)


def is_sensitive_key(key: Any) -> bool:
    k = str(key).lower()
    if k in _EXACT_FIELDS:
        return True
    return any(f in k for f in _SENSITIVE_FIELDS)


def sanitize(obj: Any, _depth: int = 0) -> Any:
    """Recursively redact sensitive dict keys before anything reaches a log line."""
    if _depth > 8:
        return "[TRUNCATED]"
    if isinstance(obj, dict):
        out: dict[str, Any] = {}
        for k, v in obj.items():
            out[k] = REDACTED if is_sensitive_key(k) else sanitize(v, _depth + 1)
        return out
    if isinstance(obj, (list, tuple)):
        return [sanitize(v, _depth + 1) for v in obj]
    return obj


def safe_request_info(request) -> dict[str, Any]:
    url = getattr(request, "url", None)
    headers = getattr(request, "headers", None) or {}
    return {
        "method": getattr(request, "method", "unknown"),
        "path": (url.path if url is not None else "unknown"),
        "userAgent": "[USER_AGENT]" if headers.get("user-agent") else "none",
    }


class RedactingFilter(logging.Filter):
    """Sanitizes dict/list log args in place."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, dict):
            record.args = sanitize(record.args)
        elif isinstance(record.args, tuple) and record.args:
            record.args = tuple(sanitize(a) if isinstance(a, (dict, list)) else a for a in record.args)
        return True
