import json
from datetime import datetime, timezone

import pytest

from qms_webhooks.services.webhook_payload import (
    HEADER_RETRY_ATTEMPT,
    build_headers,
    build_payload,
    is_reserved_header,
)


def test_payload_shape_and_timestamp():
    ts = datetime(2026, 3, 2, 9, 0, 0, 123000, tzinfo=timezone.utc)
    payload = build_payload(event_type="ncr.created", timestamp=ts, data={"id": 42, "title": "Scratch"})

    assert json.loads(payload) == {
        "event": "ncr.created",
        "timestamp": "2026-03-02T09:00:00.123Z",
        "data": {"id": 42, "title": "Scratch"},
    }
    # compact and deterministic: stored once, re-sent verbatim
    assert payload.startswith('{"event":"ncr.created","timestamp":')
    assert payload == build_payload(event_type="ncr.created", timestamp=ts, data={"id": 42, "title": "Scratch"})


def test_payload_keeps_non_ascii_and_stringifies_unknown_types():
    ts = datetime(2026, 3, 2, tzinfo=timezone.utc)
    payload = build_payload(event_type="capa.closed", timestamp=ts, data={"owner": "Zoë", "due": ts})
    assert "Zoë" in payload
    assert json.loads(payload)["data"]["due"] == str(ts)


def test_first_send_has_no_retry_header():
    h = build_headers(signature="sig", event_type="ncr.created")
    assert h == {
        "Content-Type": "application/json",
        "X-Webhook-Signature": "sig",
        "X-Webhook-Event": "ncr.created",
    }
    assert HEADER_RETRY_ATTEMPT not in build_headers(signature="sig", event_type="ncr.created", attempt_number=1)


def test_retry_header_from_second_send():
    h = build_headers(signature="sig", event_type="ncr.created", attempt_number=3)
    assert h[HEADER_RETRY_ATTEMPT] == "3"


def test_custom_headers_cannot_override_protocol_headers():
    h = build_headers(
        signature="real",
        event_type="ncr.created",
        custom_headers={
            "x-webhook-signature": "forged",
            "X-WEBHOOK-EVENT": "capa.closed",
            "content-type": "text/plain",
            "X-Tenant": "acme",
        },
    )
    assert h["X-Webhook-Signature"] == "real"
    assert h["X-Webhook-Event"] == "ncr.created"
    assert h["Content-Type"] == "application/json"
    assert h["X-Tenant"] == "acme"
    assert "x-webhook-signature" not in h


@pytest.mark.parametrize("name", ["X-Webhook-Signature", " x-webhook-retry-attempt ", "CONTENT-TYPE"])
def test_reserved_header_names(name):
    assert is_reserved_header(name)


def test_ordinary_header_is_not_reserved():
    assert not is_reserved_header("Authorization")
