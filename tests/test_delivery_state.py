from datetime import datetime, timedelta, timezone

import pytest

from qms_webhooks.models.webhook_delivery import WebhookDelivery
from qms_webhooks.models.webhook_subscription import WebhookSubscription
from qms_webhooks.services.delivery_executor import DeliveryOutcome
from qms_webhooks.services.delivery_state import (
    TerminalDeliveryError,
    apply_outcome,
    mark_subscription_gone,
)
from qms_webhooks.services.retry import compute_backoff_seconds

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

OK = DeliveryOutcome(success=True, status_code=200, response_body="ok", response_time_ms=12)
BOOM = DeliveryOutcome(
    success=False, status_code=500, response_body="boom", response_time_ms=8,
    error_message="HTTP 500: Internal Server Error",
)


def _sub(active=True, retry_enabled=True, base=60):
    return WebhookSubscription(
        id="whs_1", name="s", url="https://ok.example/hook", secret_ciphertext="x",
        event_types=["ncr.created"], is_active=active, retry_enabled=retry_enabled,
        max_attempts=3, retry_base_delay_seconds=base,
    )


def _delivery(attempt=0, max_attempts=3, status="pending"):
    return WebhookDelivery(
        id="whd_1", subscription_id="whs_1", event_type="ncr.created", entity_type="NCR",
        entity_id=42, request_url="https://ok.example/hook", request_payload="{}",
        attempt=attempt, max_attempts=max_attempts, status=status,
    )


def test_success_is_terminal_with_delivered_at():
    d = _delivery()
    apply_outcome(d, _sub(), OK, now=NOW)
    assert (d.status, d.attempt, d.delivered_at, d.next_retry_at) == ("success", 1, NOW, None)
    assert d.response_status == 200


def test_failure_schedules_retry_with_backoff():
    d = _delivery()
    apply_outcome(d, _sub(base=60), BOOM, now=NOW)
    assert d.status == "retrying"
    assert d.attempt == 1
    assert d.next_retry_at == NOW + timedelta(seconds=60)
    assert d.error_message == "HTTP 500: Internal Server Error"
    assert d.response_body == "boom"

    apply_outcome(d, _sub(base=60), BOOM, now=NOW)
    assert d.attempt == 2
    assert d.next_retry_at == NOW + timedelta(seconds=120)


def test_exhaustion_fails_with_max_retries_message():
    d = _delivery(attempt=2, status="retrying")
    apply_outcome(d, _sub(), BOOM, now=NOW)
    assert d.status == "failed"
    assert d.attempt == 3
    assert d.next_retry_at is None
    assert d.error_message.startswith("max retries reached")


def test_retry_disabled_fails_after_first_send():
    d = _delivery()
    apply_outcome(d, _sub(retry_enabled=False), BOOM, now=NOW)
    assert d.status == "failed"
    assert d.error_message == "HTTP 500: Internal Server Error"


@pytest.mark.parametrize("sub", [None, _sub(active=False)])
def test_inactive_or_missing_subscription_fails(sub):
    d = _delivery(attempt=1, status="retrying")
    apply_outcome(d, sub, BOOM, now=NOW)
    assert d.status == "failed"
    assert d.error_message == "subscription inactive"


def test_mark_subscription_gone_does_not_spend_an_attempt():
    d = _delivery(attempt=1, status="retrying")
    d.next_retry_at = NOW
    mark_subscription_gone(d)
    assert (d.status, d.attempt, d.next_retry_at, d.error_message) == ("failed", 1, None, "subscription inactive")


@pytest.mark.parametrize("status", ["success", "failed"])
def test_terminal_rows_are_never_mutated(status):
    d = _delivery(attempt=1, status=status)
    with pytest.raises(TerminalDeliveryError):
        apply_outcome(d, _sub(), OK, now=NOW)
    with pytest.raises(TerminalDeliveryError):
        mark_subscription_gone(d)
    assert d.attempt == 1
    assert d.status == status


@pytest.mark.parametrize("max_attempts", [1, 2, 3, 5, 10])
def test_attempt_never_exceeds_budget(max_attempts):
    d = _delivery(max_attempts=max_attempts)
    retry_times = []
    while not d.is_terminal:
        apply_outcome(d, _sub(), BOOM, now=NOW)
        assert d.attempt <= d.max_attempts
        assert (d.next_retry_at is not None) == (d.status == "retrying")
        if d.next_retry_at is not None:
            retry_times.append(d.next_retry_at)
    assert d.attempt == max_attempts
    assert retry_times == sorted(set(retry_times))


def test_backoff_doubles_per_attempt():
    assert [compute_backoff_seconds(k, base=60) for k in range(1, 6)] == [60, 120, 240, 480, 960]
    assert compute_backoff_seconds(0, base=10) == 10
