import pytest

from qms_webhooks.services.redaction import REDACTED, redact_detail, redact_headers


@pytest.mark.parametrize("name", ["Authorization", "X-Auth-Token", "x-api-key", "X-Client-Secret", "Cookie"])
def test_sensitive_header_values_are_masked(name):
    assert redact_headers({name: "value", "X-Tenant": "acme"}) == {name: REDACTED, "X-Tenant": "acme"}


def test_missing_headers_stay_missing():
    assert redact_headers(None) is None
    assert redact_headers({}) == {}


def test_detail_is_masked_recursively():
    detail = {
        "url": "https://ok.example/hook",
        "secret": "abc",
        "custom_headers": {"Authorization": "Bearer x", "X-Tenant": "acme"},
        "items": [{"password": "p"}, "plain"],
    }
    assert redact_detail(detail) == {
        "url": "https://ok.example/hook",
        "secret": REDACTED,
        "custom_headers": {"Authorization": REDACTED, "X-Tenant": "acme"},
        "items": [{"password": REDACTED}, "plain"],
    }


def test_signature_stays_visible_as_evidence():
    headers = {"X-Webhook-Signature": "sha256=ab12", "X-Webhook-Event": "ncr.created"}
    assert redact_headers(headers) == headers
