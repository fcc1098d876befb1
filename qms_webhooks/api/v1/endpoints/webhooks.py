from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from qms_webhooks.api.deps import get_clock, get_executor, get_retry_scheduler
from qms_webhooks.core.clock import Clock
from qms_webhooks.core.config import settings
from qms_webhooks.core.db import get_db
from qms_webhooks.core.events import KNOWN_ENTITY_TYPES
from qms_webhooks.models.webhook_delivery import WebhookDelivery
from qms_webhooks.models.webhook_subscription import WebhookSubscription
from qms_webhooks.schemas.webhook import (
    DeliveryOut,
    DeliveryStatisticsOut,
    MessageOut,
    RetryPolicy,
    RetryTriggeredOut,
    SecretRegeneratedOut,
    SubscriptionCreate,
    SubscriptionCreatedOut,
    SubscriptionOut,
    SubscriptionUpdate,
    TestDeliveryOut,
)
from qms_webhooks.services import delivery_ledger, subscription_registry
from qms_webhooks.services.audit import audit
from qms_webhooks.services.delivery_executor import DeliveryExecutor
from qms_webhooks.services.delivery_ledger import DeliveryNotRetryable
from qms_webhooks.services.diagnostics import send_test_delivery
from qms_webhooks.services.internal_admin import require_internal_admin
from qms_webhooks.services.redaction import REDACTED, redact_headers
from qms_webhooks.services.retry_scheduler import RetryScheduler

router = APIRouter()

_STATUS_PATTERN = "^(pending|retrying|success|failed)$"


def _subscription_out(s: WebhookSubscription) -> SubscriptionOut:
    return SubscriptionOut(
        id=s.id,
        name=s.name,
        url=s.url,
        secret=REDACTED,
        events=list(s.event_types or []),
        active=s.is_active,
        retry_policy=RetryPolicy(
            enabled=s.retry_enabled,
            max_attempts=s.max_attempts,
            base_delay_seconds=s.retry_base_delay_seconds,
        ),
        custom_headers=redact_headers(s.custom_headers),
        created_by=s.created_by,
        created_at=s.created_at,
        updated_at=s.updated_at,
        last_triggered_at=s.last_triggered_at,
    )


def _delivery_out(d: WebhookDelivery) -> DeliveryOut:
    return DeliveryOut(
        id=d.id,
        subscription_id=d.subscription_id,
        event_type=d.event_type,
        entity_type=d.entity_type,
        entity_id=d.entity_id,
        request_url=d.request_url,
        request_payload=d.request_payload,
        request_headers=d.request_headers,
        response_status=d.response_status,
        response_body=d.response_body,
        response_time_ms=d.response_time_ms,
        attempt=d.attempt,
        max_attempts=d.max_attempts,
        next_retry_at=d.next_retry_at,
        status=d.status,
        error_message=d.error_message,
        created_at=d.created_at,
        delivered_at=d.delivered_at,
    )


async def _get_subscription_or_404(db: AsyncSession, subscription_id: str) -> WebhookSubscription:
    s = await subscription_registry.find_by_id(db, subscription_id)
    if not s:
        raise HTTPException(status_code=404, detail="Webhook subscription not found")
    return s


def _changes_from_update(body: SubscriptionUpdate) -> dict:
    given = body.model_dump(exclude_unset=True)
    changes: dict = {}
    if "name" in given:
        changes["name"] = body.name
    if "url" in given:
        changes["url"] = body.url
    if "events" in given:
        changes["event_types"] = body.events
    if "active" in given:
        changes["is_active"] = body.active
    if "custom_headers" in given:
        changes["custom_headers"] = body.custom_headers or None
    if "retry_policy" in given and body.retry_policy is not None:
        changes["retry_enabled"] = body.retry_policy.enabled
        changes["max_attempts"] = body.retry_policy.max_attempts
        changes["retry_base_delay_seconds"] = body.retry_policy.base_delay_seconds
    # null for a required field means "leave as is"
    return {k: v for k, v in changes.items() if v is not None or k == "custom_headers"}


@router.post("/webhooks", response_model=SubscriptionCreatedOut, status_code=201)
async def create_webhook(
    body: SubscriptionCreate,
    actor: str = Depends(require_internal_admin),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionCreatedOut:
    created = await subscription_registry.create_subscription(
        db,
        name=body.name,
        url=body.url,
        event_types=body.events,
        retry_enabled=body.retry_policy.enabled,
        max_attempts=body.retry_policy.max_attempts,
        retry_base_delay_seconds=body.retry_policy.base_delay_seconds,
        custom_headers=body.custom_headers,
        actor=actor,
    )
    sub = created.subscription
    await audit(
        db,
        actor=actor,
        action="webhook.create",
        target_type="webhook_subscription",
        target_id=sub.id,
        detail={"name": sub.name, "url": sub.url, "events": list(sub.event_types)},
    )
    await db.commit()
    return SubscriptionCreatedOut(id=sub.id, secret=created.secret)


@router.get("/webhooks", response_model=list[SubscriptionOut])
async def list_webhooks(
    active: bool = Query(default=False),
    _: str = Depends(require_internal_admin),
    db: AsyncSession = Depends(get_db),
) -> list[SubscriptionOut]:
    rows = await subscription_registry.list_subscriptions(db, active_only=active)
    return [_subscription_out(s) for s in rows]


# declared before /webhooks/{subscription_id} so "deliveries" is not read as an id
@router.get("/webhooks/deliveries", response_model=list[DeliveryOut])
async def list_entity_deliveries(
    entity_type: str = Query(...),
    entity_id: int = Query(...),
    limit: int = Query(default=50, ge=1, le=500),
    _: str = Depends(require_internal_admin),
    db: AsyncSession = Depends(get_db),
) -> list[DeliveryOut]:
    if entity_type not in KNOWN_ENTITY_TYPES:
        raise HTTPException(status_code=422, detail=f"Unknown entity type: {entity_type}")
    rows = await delivery_ledger.list_for_entity(db, entity_type=entity_type, entity_id=entity_id, limit=limit)
    return [_delivery_out(d) for d in rows]


@router.post("/webhooks/deliveries/{delivery_id}/retry", response_model=RetryTriggeredOut)
async def retry_delivery(
    delivery_id: str,
    actor: str = Depends(require_internal_admin),
    db: AsyncSession = Depends(get_db),
    retries: RetryScheduler = Depends(get_retry_scheduler),
    clock: Clock = Depends(get_clock),
) -> RetryTriggeredOut:
    d = await delivery_ledger.get_delivery(db, delivery_id)
    if not d:
        raise HTTPException(status_code=404, detail="Delivery not found")

    previous = d.status
    try:
        # a pending row past twice the send timeout lost its first attempt
        delivery_ledger.rearm(d, now=clock(), stale_after_seconds=2 * settings.webhook_timeout_seconds)
    except DeliveryNotRetryable as e:
        raise HTTPException(status_code=409, detail=str(e))

    await audit(
        db,
        actor=actor,
        action="webhook.delivery.retry",
        target_type="webhook_delivery",
        target_id=d.id,
        detail={"previous_status": previous, "attempt": d.attempt, "max_attempts": d.max_attempts},
    )
    await db.commit()

    status = await retries.process_delivery(delivery_id)
    return RetryTriggeredOut(message="Webhook retry triggered", delivery_id=delivery_id, status=status)


@router.get("/webhooks/{subscription_id}", response_model=SubscriptionOut)
async def get_webhook(
    subscription_id: str,
    _: str = Depends(require_internal_admin),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionOut:
    return _subscription_out(await _get_subscription_or_404(db, subscription_id))


@router.put("/webhooks/{subscription_id}", response_model=SubscriptionOut)
async def update_webhook(
    subscription_id: str,
    body: SubscriptionUpdate,
    actor: str = Depends(require_internal_admin),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionOut:
    sub = await _get_subscription_or_404(db, subscription_id)

    changes = _changes_from_update(body)
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")

    await subscription_registry.update_subscription(db, sub, changes, actor=actor)
    await audit(
        db,
        actor=actor,
        action="webhook.update",
        target_type="webhook_subscription",
        target_id=sub.id,
        detail={"fields": sorted(changes)},
    )
    await db.commit()
    await db.refresh(sub)
    return _subscription_out(sub)


@router.delete("/webhooks/{subscription_id}", response_model=MessageOut)
async def delete_webhook(
    subscription_id: str,
    actor: str = Depends(require_internal_admin),
    db: AsyncSession = Depends(get_db),
) -> MessageOut:
    sub = await _get_subscription_or_404(db, subscription_id)
    await subscription_registry.delete_subscription(db, sub)
    await audit(
        db,
        actor=actor,
        action="webhook.delete",
        target_type="webhook_subscription",
        target_id=subscription_id,
        detail={"name": sub.name, "url": sub.url},
    )
    await db.commit()
    return MessageOut(message="Webhook subscription deleted successfully")


@router.post("/webhooks/{subscription_id}/regenerate-secret", response_model=SecretRegeneratedOut)
async def regenerate_webhook_secret(
    subscription_id: str,
    actor: str = Depends(require_internal_admin),
    db: AsyncSession = Depends(get_db),
) -> SecretRegeneratedOut:
    sub = await _get_subscription_or_404(db, subscription_id)
    secret = await subscription_registry.regenerate_secret(db, sub, actor=actor)
    await audit(
        db,
        actor=actor,
        action="webhook.regenerate_secret",
        target_type="webhook_subscription",
        target_id=sub.id,
    )
    await db.commit()
    return SecretRegeneratedOut(id=sub.id, secret=secret)


@router.post("/webhooks/{subscription_id}/test", response_model=TestDeliveryOut)
async def test_webhook(
    subscription_id: str,
    _: str = Depends(require_internal_admin),
    db: AsyncSession = Depends(get_db),
    executor: DeliveryExecutor = Depends(get_executor),
    clock: Clock = Depends(get_clock),
) -> TestDeliveryOut:
    sub = await _get_subscription_or_404(db, subscription_id)
    # done with the DB; don't hold a connection across the outbound call
    await db.commit()

    result = await send_test_delivery(executor, sub, clock=clock)
    return TestDeliveryOut(
        success=result.success,
        message=result.message,
        response_status=result.response_status,
        response_time_ms=result.response_time_ms,
    )


@router.get("/webhooks/{subscription_id}/deliveries", response_model=list[DeliveryOut])
async def list_webhook_deliveries(
    subscription_id: str,
    status: str | None = Query(default=None, pattern=_STATUS_PATTERN),
    limit: int = Query(default=50, ge=1, le=500),
    _: str = Depends(require_internal_admin),
    db: AsyncSession = Depends(get_db),
) -> list[DeliveryOut]:
    # history outlives the subscription, so an unknown id is not a 404 here
    rows = await delivery_ledger.list_for_subscription(db, subscription_id, status=status, limit=limit)
    return [_delivery_out(d) for d in rows]


@router.get("/webhooks/{subscription_id}/statistics", response_model=DeliveryStatisticsOut)
async def webhook_statistics(
    subscription_id: str,
    days: int = Query(default=7, ge=1, le=365),
    _: str = Depends(require_internal_admin),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> DeliveryStatisticsOut:
    stats = await delivery_ledger.statistics(db, subscription_id, now=clock(), days=days)
    return DeliveryStatisticsOut(
        total=stats.total,
        success=stats.success,
        failed=stats.failed,
        pending=stats.pending,
        retrying=stats.retrying,
        success_rate=stats.success_rate,
    )
