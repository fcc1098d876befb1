import asyncio

import httpx
import pytest

from qms_webhooks.core.crypto import encrypt_secret
from qms_webhooks.models.webhook_delivery import WebhookDelivery
from qms_webhooks.models.webhook_subscription import WebhookSubscription
from qms_webhooks.services.signing import verify_signature

SECRET = "c0ffee" * 10 + "abcd"
PAYLOAD = '{"event":"ncr.created","timestamp":"2026-03-02T09:00:00.000Z","data":{"id":42}}'


def _subscription(url="https://ok.example/hook", custom_headers=None, ciphertext=None):
    return WebhookSubscription(
        id="whs_test",
        name="hook",
        url=url,
        secret_ciphertext=ciphertext or encrypt_secret(SECRET),
        event_types=["ncr.created"],
        is_active=True,
        retry_enabled=True,
        max_attempts=3,
        retry_base_delay_seconds=60,
        custom_headers=custom_headers,
    )


def _delivery(attempt=0):
    return WebhookDelivery(
        id="whd_test",
        subscription_id="whs_test",
        event_type="ncr.created",
        entity_type="NCR",
        entity_id=42,
        request_url="https://ok.example/hook",
        request_payload=PAYLOAD,
        attempt=attempt,
        max_attempts=3,
        status="pending",
    )


@pytest.mark.asyncio
async def test_success_sends_signed_exact_body(executor, subscriber):
    outcome = await executor.attempt(_subscription(custom_headers={"X-Tenant": "acme"}), _delivery())

    assert outcome.success is True
    assert outcome.status_code == 200
    assert outcome.response_body == "ok"
    assert outcome.error_message is None
    assert outcome.response_time_ms is not None

    [req] = subscriber.requests
    assert req.method == "POST"
    assert req.content == PAYLOAD.encode("utf-8")
    assert verify_signature(req.content, req.headers["X-Webhook-Signature"], SECRET)
    assert req.headers["X-Webhook-Event"] == "ncr.created"
    assert req.headers["Content-Type"] == "application/json"
    assert req.headers["User-Agent"] == "E-QMS-Webhook/1.0"
    assert req.headers["X-Tenant"] == "acme"
    assert "X-Webhook-Retry-Attempt" not in req.headers


@pytest.mark.asyncio
async def test_retry_send_carries_next_attempt_number(executor, subscriber):
    await executor.attempt(_subscription(), _delivery(attempt=2))
    assert subscriber.requests[0].headers["X-Webhook-Retry-Attempt"] == "3"


@pytest.mark.asyncio
async def test_non_2xx_is_failure_with_truncated_body(subscriber, http_client, executor):
    subscriber.route("ok.example", httpx.Response(503, text="x" * 6000))

    outcome = await executor.attempt(_subscription(), _delivery())

    assert outcome.success is False
    assert outcome.status_code == 503
    assert len(outcome.response_body) == 5000
    assert outcome.error_message.startswith("HTTP 503")


@pytest.mark.asyncio
async def test_oversized_body_is_not_read_past_the_cap(subscriber, executor):
    yielded = 0

    async def _endless():
        nonlocal yielded
        for _ in range(10_000):
            yielded += 1
            yield b"y" * 100

    subscriber.route("ok.example", httpx.Response(500, content=_endless()))

    outcome = await executor.attempt(_subscription(), _delivery())

    assert outcome.status_code == 500
    assert outcome.response_body == "y" * 5000
    assert yielded < 10_000


@pytest.mark.asyncio
async def test_redirect_is_not_followed(subscriber, executor):
    subscriber.route("ok.example", httpx.Response(302, headers={"Location": "https://elsewhere.example/"}))

    outcome = await executor.attempt(_subscription(), _delivery())

    assert outcome.success is False
    assert outcome.status_code == 302
    assert subscriber.calls_to("elsewhere.example") == []


@pytest.mark.asyncio
async def test_transport_error_is_failure_without_status(subscriber, executor):
    subscriber.route("ok.example", httpx.ConnectError("connection refused"))

    outcome = await executor.attempt(_subscription(), _delivery())

    assert outcome.success is False
    assert outcome.status_code is None
    assert "connection refused" in outcome.error_message


@pytest.mark.asyncio
async def test_hard_deadline_cancels_slow_subscriber(subscriber, executor, http_client):
    async def _hang(request):
        await asyncio.sleep(30)
        return httpx.Response(200)

    subscriber.route("ok.example", _hang)

    started = asyncio.get_running_loop().time()
    outcome = await executor.attempt(_subscription(), _delivery())
    waited = asyncio.get_running_loop().time() - started

    assert outcome.success is False
    assert outcome.status_code is None
    assert outcome.error_message.startswith("timeout after 0.5s")
    assert waited < 5


@pytest.mark.asyncio
async def test_undecryptable_secret_fails_without_sending(subscriber, executor):
    outcome = await executor.attempt(_subscription(ciphertext="not-a-fernet-token"), _delivery())

    assert outcome.success is False
    assert outcome.error_message.startswith("signing failed")
    assert subscriber.requests == []
