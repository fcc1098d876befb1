from __future__ import annotations

import logging
from dataclasses import dataclass

from cryptography.fernet import InvalidToken

from qms_webhooks.core.clock import Clock, utcnow
from qms_webhooks.core.crypto import decrypt_secret
from qms_webhooks.core.events import TEST_EVENT
from qms_webhooks.models.webhook_subscription import WebhookSubscription
from qms_webhooks.services.delivery_executor import DeliveryExecutor
from qms_webhooks.services.webhook_payload import build_payload


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiagnosticResult:
    success: bool
    message: str
    response_status: int | None
    response_time_ms: int | None


async def send_test_delivery(
    executor: DeliveryExecutor,
    subscription: WebhookSubscription,
    *,
    clock: Clock = utcnow,
) -> DiagnosticResult:
    """
    One synthetic signed POST, right now. Bypasses the ledger and the retry
    policy but goes through the same signer and header builder as real traffic.
    """
    try:
        secret = decrypt_secret(subscription.secret_ciphertext)
    except InvalidToken:
        log.error("subscription %s: secret could not be decrypted, test not sent", subscription.id)
        return DiagnosticResult(
            success=False,
            message="Test webhook failed: secret could not be decrypted",
            response_status=None,
            response_time_ms=None,
        )

    payload = build_payload(
        event_type=TEST_EVENT,
        timestamp=clock(),
        data={"test": True, "message": "This is a test webhook from E-QMS"},
    )
    outcome = await executor.send(
        url=subscription.url,
        secret=secret,
        payload=payload,
        event_type=TEST_EVENT,
        custom_headers=subscription.custom_headers,
    )

    if outcome.success:
        message = f"Test webhook delivered successfully ({outcome.status_code})"
    else:
        message = f"Test webhook failed: {outcome.error_message}"

    return DiagnosticResult(
        success=outcome.success,
        message=message,
        response_status=outcome.status_code,
        response_time_ms=outcome.response_time_ms,
    )
