"""
Wire format of outbound webhooks.

Production delivery and the diagnostic send both build their body and
headers here so the two paths cannot drift apart.
"""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Mapping

from qms_webhooks.core.clock import rfc3339

HEADER_CONTENT_TYPE = "Content-Type"
HEADER_SIGNATURE = "X-Webhook-Signature"
HEADER_EVENT = "X-Webhook-Event"
HEADER_RETRY_ATTEMPT = "X-Webhook-Retry-Attempt"

RESERVED_HEADERS = frozenset(
    h.lower() for h in (HEADER_CONTENT_TYPE, HEADER_SIGNATURE, HEADER_EVENT, HEADER_RETRY_ATTEMPT)
)


def is_reserved_header(name: str) -> bool:
    return name.strip().lower() in RESERVED_HEADERS


def build_payload(*, event_type: str, timestamp: datetime, data: Mapping[str, Any]) -> str:
    """Serialize the canonical body once; the result is stored and re-sent verbatim."""
    body = {"event": event_type, "timestamp": rfc3339(timestamp), "data": dict(data)}
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False, default=str)


def payload_bytes(payload: str) -> bytes:
    return payload.encode("utf-8")


def build_headers(
    *,
    signature: str,
    event_type: str,
    attempt_number: int | None = None,
    custom_headers: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """
    attempt_number is the 1-based number of the send being made; the retry
    header is only emitted from the second send on.
    """
    headers: dict[str, str] = {}
    for name, value in (custom_headers or {}).items():
        # registry validation already rejects these; never let one through
        if is_reserved_header(name):
            continue
        headers[name] = str(value)

    headers[HEADER_CONTENT_TYPE] = "application/json"
    headers[HEADER_SIGNATURE] = signature
    headers[HEADER_EVENT] = event_type
    if attempt_number is not None and attempt_number > 1:
        headers[HEADER_RETRY_ATTEMPT] = str(attempt_number)
    return headers
