from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

from opentelemetry import trace

from qms_webhooks.core.crypto import decrypt_secret
from qms_webhooks.models.webhook_delivery import WebhookDelivery
from qms_webhooks.models.webhook_subscription import WebhookSubscription
from qms_webhooks.services.http_client import HttpResult, WebhookHttpClient
from qms_webhooks.services.signing import sign_payload
from qms_webhooks.services.webhook_payload import build_headers, payload_bytes


log = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True)
class DeliveryOutcome:
    success: bool
    status_code: int | None
    response_body: str | None
    response_time_ms: int | None
    error_message: str | None = None
    request_headers: dict[str, str] | None = None

    @classmethod
    def from_http(cls, result: HttpResult) -> "DeliveryOutcome":
        return cls(
            success=result.ok,
            status_code=result.status_code,
            response_body=result.body,
            response_time_ms=result.elapsed_ms,
            error_message=None if result.ok else (result.error_message or result.error_code or "delivery failed"),
            request_headers=result.request_headers,
        )


class DeliveryExecutor:
    """
    One signed POST to a subscriber, classified into a DeliveryOutcome.

    No ledger writes happen here; callers persist the outcome.
    """

    def __init__(self, http: WebhookHttpClient):
        self._http = http

    async def send(
        self,
        *,
        url: str,
        secret: str,
        payload: str,
        event_type: str,
        attempt_number: int | None = None,
        custom_headers: Mapping[str, str] | None = None,
    ) -> DeliveryOutcome:
        body = payload_bytes(payload)
        headers = build_headers(
            signature=sign_payload(body, secret),
            event_type=event_type,
            attempt_number=attempt_number,
            custom_headers=custom_headers,
        )

        with tracer.start_as_current_span(
            "webhook.deliver",
            attributes={"webhook.event_type": event_type, "webhook.attempt": attempt_number or 1},
        ) as span:
            result = await self._http.post_bytes(url=url, content=body, headers=headers)
            if result.status_code is not None:
                span.set_attribute("http.status_code", result.status_code)
            if not result.ok:
                span.set_attribute("webhook.error", result.error_code or "error")

        return DeliveryOutcome.from_http(result)

    async def attempt(self, subscription: WebhookSubscription, delivery: WebhookDelivery) -> DeliveryOutcome:
        """Send the stored payload of a delivery as its next attempt."""
        try:
            secret = decrypt_secret(subscription.secret_ciphertext)
        except Exception as e:
            log.error("subscription %s: secret could not be decrypted", subscription.id)
            return DeliveryOutcome(
                success=False,
                status_code=None,
                response_body=None,
                response_time_ms=0,
                error_message=f"signing failed: {type(e).__name__}",
            )

        return await self.send(
            url=subscription.url,
            secret=secret,
            payload=delivery.request_payload,
            event_type=delivery.event_type,
            attempt_number=delivery.attempt + 1,
            custom_headers=subscription.custom_headers,
        )
