"""Masking for read paths and audit details."""
from __future__ import annotations

from typing import Any, Mapping

REDACTED = "***REDACTED***"

# exact names (lowercase) that are always masked
SENSITIVE_NAMES = frozenset({
    "password", "pass", "pwd",
    "cookie", "set-cookie",
    "api_key", "apikey", "x-api-key",
})

# any name containing one of these is masked too (authorization, x-auth-token, client_secret, ...)
SENSITIVE_MARKERS = ("auth", "token", "secret", "key")


def is_sensitive_name(name: str) -> bool:
    n = name.strip().lower()
    return n in SENSITIVE_NAMES or any(marker in n for marker in SENSITIVE_MARKERS)


def redact_headers(headers: Mapping[str, str] | None) -> dict[str, str] | None:
    """Custom subscriber headers as shown to operators: names kept, sensitive values masked."""
    if headers is None:
        return None
    return {name: (REDACTED if is_sensitive_name(name) else value) for name, value in headers.items()}


def redact_detail(value: Any) -> Any:
    """Recursive variant for audit details and other nested JSON."""
    if isinstance(value, Mapping):
        return {
            k: (REDACTED if isinstance(k, str) and is_sensitive_name(k) else redact_detail(v))
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [redact_detail(v) for v in value]
    return value
