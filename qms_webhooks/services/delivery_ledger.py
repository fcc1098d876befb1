from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from qms_webhooks.core.clock import as_utc
from qms_webhooks.models.webhook_delivery import (
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_RETRYING,
    STATUS_SUCCESS,
    TERMINAL_STATUSES,
    WebhookDelivery,
)
from qms_webhooks.models.webhook_subscription import WebhookSubscription


@dataclass(frozen=True)
class DeliveryStatistics:
    total: int
    success: int
    failed: int
    pending: int
    retrying: int
    success_rate: float


class DeliveryNotRetryable(RuntimeError):
    pass


async def create_pending(
    db: AsyncSession,
    *,
    subscription: WebhookSubscription,
    event_type: str,
    entity_type: str,
    entity_id: int,
    payload: str,
    now: datetime | None = None,
) -> WebhookDelivery:
    d = WebhookDelivery(
        subscription_id=subscription.id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        request_url=subscription.url,
        request_payload=payload,
        attempt=0,
        # policy is frozen into the row; later edits don't reach in-flight deliveries
        max_attempts=subscription.max_attempts,
        status=STATUS_PENDING,
    )
    if now is not None:
        d.created_at = now
    db.add(d)
    await db.flush()
    return d


async def get_delivery(db: AsyncSession, delivery_id: str) -> WebhookDelivery | None:
    return (await db.execute(
        select(WebhookDelivery).where(WebhookDelivery.id == delivery_id)
    )).scalar_one_or_none()


async def find_due_retry_ids(db: AsyncSession, *, now: datetime, limit: int = 100) -> list[str]:
    stmt = (
        select(WebhookDelivery.id)
        .where(
            WebhookDelivery.status == STATUS_RETRYING,
            WebhookDelivery.next_retry_at.is_not(None),
            WebhookDelivery.next_retry_at <= now,
        )
        .order_by(WebhookDelivery.next_retry_at.asc())
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all())


async def list_for_subscription(
    db: AsyncSession,
    subscription_id: str,
    *,
    status: str | None = None,
    limit: int = 50,
) -> list[WebhookDelivery]:
    stmt = select(WebhookDelivery).where(WebhookDelivery.subscription_id == subscription_id)
    if status:
        stmt = stmt.where(WebhookDelivery.status == status)
    stmt = stmt.order_by(WebhookDelivery.created_at.desc(), WebhookDelivery.id.desc()).limit(limit)
    return list((await db.execute(stmt)).scalars().all())


async def list_for_entity(
    db: AsyncSession, *, entity_type: str, entity_id: int, limit: int = 50
) -> list[WebhookDelivery]:
    stmt = (
        select(WebhookDelivery)
        .where(WebhookDelivery.entity_type == entity_type, WebhookDelivery.entity_id == entity_id)
        .order_by(WebhookDelivery.created_at.desc(), WebhookDelivery.id.desc())
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all())


async def statistics(
    db: AsyncSession, subscription_id: str, *, now: datetime, days: int = 7
) -> DeliveryStatistics:
    cutoff = now - timedelta(days=days)

    def _count(status: str):
        return func.coalesce(func.sum(case((WebhookDelivery.status == status, 1), else_=0)), 0)

    row = (await db.execute(
        select(
            func.count(WebhookDelivery.id),
            _count(STATUS_SUCCESS),
            _count(STATUS_FAILED),
            _count(STATUS_PENDING),
            _count(STATUS_RETRYING),
        ).where(
            WebhookDelivery.subscription_id == subscription_id,
            WebhookDelivery.created_at >= cutoff,
        )
    )).one()

    total, success, failed, pending, retrying = (int(v or 0) for v in row)
    rate = round(success / total * 100, 2) if total else 0.0
    return DeliveryStatistics(
        total=total, success=success, failed=failed, pending=pending, retrying=retrying, success_rate=rate,
    )


def rearm(delivery: WebhookDelivery, *, now: datetime, stale_after_seconds: float | None = None) -> None:
    """
    Operator re-arm: make a failed/retrying delivery due immediately.

    A pending row is only accepted once it is older than stale_after_seconds;
    by then its first send has died without recording a result.
    """
    if delivery.status == STATUS_SUCCESS:
        raise DeliveryNotRetryable("delivery already succeeded")
    if delivery.status == STATUS_PENDING:
        stale = (
            stale_after_seconds is not None
            and delivery.created_at is not None
            and as_utc(delivery.created_at) <= as_utc(now) - timedelta(seconds=stale_after_seconds)
        )
        if not stale:
            raise DeliveryNotRetryable("delivery is still in flight")

    # keeps attempt <= max_attempts: an exhausted delivery gets exactly one more send
    if delivery.attempt >= delivery.max_attempts:
        delivery.max_attempts = delivery.attempt + 1
    delivery.status = STATUS_RETRYING
    delivery.next_retry_at = now


async def purge_terminal_older_than(db: AsyncSession, *, now: datetime, days: int) -> int:
    cutoff = now - timedelta(days=days)
    result = await db.execute(
        delete(WebhookDelivery).where(
            WebhookDelivery.status.in_(sorted(TERMINAL_STATUSES)),
            WebhookDelivery.created_at < cutoff,
        )
    )
    return int(result.rowcount or 0)
