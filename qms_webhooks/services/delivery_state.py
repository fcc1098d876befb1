from __future__ import annotations

from datetime import datetime

from qms_webhooks.models.webhook_delivery import (
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_RETRYING,
    STATUS_SUCCESS,
    WebhookDelivery,
)
from qms_webhooks.models.webhook_subscription import WebhookSubscription
from qms_webhooks.services.delivery_executor import DeliveryOutcome
from qms_webhooks.services.redaction import redact_headers
from qms_webhooks.services.retry import next_retry_time

SUBSCRIPTION_INACTIVE = "subscription inactive"
MAX_RETRIES_REACHED = "max retries reached"


class TerminalDeliveryError(RuntimeError):
    pass


def apply_outcome(
    delivery: WebhookDelivery,
    subscription: WebhookSubscription | None,
    outcome: DeliveryOutcome,
    *,
    now: datetime,
) -> None:
    """Advance a delivery by one attempt. Shared by first send and retries."""
    if delivery.is_terminal:
        raise TerminalDeliveryError(f"delivery {delivery.id} is already {delivery.status}")

    delivery.attempt += 1
    delivery.response_status = outcome.status_code
    delivery.response_body = outcome.response_body
    delivery.response_time_ms = outcome.response_time_ms
    if outcome.request_headers is not None:
        delivery.request_headers = redact_headers(outcome.request_headers)

    if outcome.success:
        delivery.status = STATUS_SUCCESS
        delivery.delivered_at = now
        delivery.next_retry_at = None
        delivery.error_message = None
        return

    detail = outcome.error_message or "delivery failed"

    if subscription is None or not subscription.is_active:
        _fail(delivery, SUBSCRIPTION_INACTIVE)
        return

    if delivery.attempt >= delivery.max_attempts:
        _fail(delivery, f"{MAX_RETRIES_REACHED}: {detail}")
        return

    if not subscription.retry_enabled:
        _fail(delivery, detail)
        return

    delivery.status = STATUS_RETRYING
    delivery.next_retry_at = next_retry_time(
        now, attempt=delivery.attempt, base=subscription.retry_base_delay_seconds
    )
    delivery.error_message = detail


def mark_subscription_gone(delivery: WebhookDelivery) -> None:
    """Terminal failure without a send: subscription deleted or deactivated."""
    if delivery.is_terminal:
        raise TerminalDeliveryError(f"delivery {delivery.id} is already {delivery.status}")
    _fail(delivery, SUBSCRIPTION_INACTIVE)


def mark_interrupted(
    delivery: WebhookDelivery,
    subscription: WebhookSubscription,
    error: str,
    *,
    now: datetime,
) -> bool:
    """
    Hand a first send that died before recording its result to the retry
    scheduler. Only pending rows are touched; returns whether it changed.
    """
    if delivery.status != STATUS_PENDING:
        return False
    delivery.status = STATUS_RETRYING
    delivery.next_retry_at = next_retry_time(
        now, attempt=max(1, delivery.attempt), base=subscription.retry_base_delay_seconds
    )
    delivery.error_message = f"delivery interrupted: {error}"
    return True


def _fail(delivery: WebhookDelivery, message: str) -> None:
    delivery.status = STATUS_FAILED
    delivery.next_retry_at = None
    delivery.error_message = message
