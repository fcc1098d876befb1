from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from urllib.parse import urlsplit

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from qms_webhooks.core.crypto import encrypt_secret, generate_webhook_secret
from qms_webhooks.models.webhook_subscription import WebhookSubscription


log = logging.getLogger(__name__)

# fields an owner may change through update_subscription
MUTABLE_FIELDS = frozenset({
    "name", "url", "event_types", "is_active",
    "retry_enabled", "max_attempts", "retry_base_delay_seconds",
    "custom_headers",
})


@dataclass(frozen=True)
class CreatedSubscription:
    subscription: WebhookSubscription
    secret: str  # plaintext, handed out exactly once


def _warn_if_plaintext(url: str) -> None:
    if urlsplit(url).scheme.lower() == "http":
        log.warning("webhook url %s is not TLS protected; payloads and signatures travel in clear", url)


async def find_active_by_event(db: AsyncSession, event_type: str) -> list[WebhookSubscription]:
    rows = (await db.execute(
        select(WebhookSubscription).where(WebhookSubscription.is_active.is_(True))
    )).scalars().all()
    # JSON column: exact membership is checked here, not with LIKE
    return [s for s in rows if s.wants(event_type)]


async def find_by_id(db: AsyncSession, subscription_id: str) -> WebhookSubscription | None:
    return (await db.execute(
        select(WebhookSubscription).where(WebhookSubscription.id == subscription_id)
    )).scalar_one_or_none()


async def list_subscriptions(db: AsyncSession, *, active_only: bool = False) -> list[WebhookSubscription]:
    stmt = select(WebhookSubscription)
    if active_only:
        stmt = stmt.where(WebhookSubscription.is_active.is_(True))
    stmt = stmt.order_by(WebhookSubscription.created_at.desc())
    return list((await db.execute(stmt)).scalars().all())


async def create_subscription(
    db: AsyncSession,
    *,
    name: str,
    url: str,
    event_types: list[str],
    retry_enabled: bool = True,
    max_attempts: int = 3,
    retry_base_delay_seconds: int = 60,
    custom_headers: dict[str, str] | None = None,
    actor: str = "internal",
) -> CreatedSubscription:
    _warn_if_plaintext(url)
    secret = generate_webhook_secret()

    sub = WebhookSubscription(
        name=name,
        url=url,
        secret_ciphertext=encrypt_secret(secret),
        event_types=sorted(set(event_types)),
        is_active=True,
        retry_enabled=retry_enabled,
        max_attempts=max_attempts,
        retry_base_delay_seconds=retry_base_delay_seconds,
        custom_headers=custom_headers or None,
        created_by=actor,
        updated_by=actor,
    )
    db.add(sub)
    await db.flush()
    return CreatedSubscription(subscription=sub, secret=secret)


async def update_subscription(
    db: AsyncSession,
    subscription: WebhookSubscription,
    changes: dict[str, Any],
    *,
    actor: str = "internal",
) -> WebhookSubscription:
    unknown = set(changes) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"not updatable: {', '.join(sorted(unknown))}")

    if "url" in changes:
        _warn_if_plaintext(changes["url"])
    if "event_types" in changes:
        changes = {**changes, "event_types": sorted(set(changes["event_types"]))}

    for key, value in changes.items():
        setattr(subscription, key, value)
    subscription.updated_by = actor
    await db.flush()
    return subscription


async def regenerate_secret(
    db: AsyncSession, subscription: WebhookSubscription, *, actor: str = "internal"
) -> str:
    secret = generate_webhook_secret()
    subscription.secret_ciphertext = encrypt_secret(secret)
    subscription.updated_by = actor
    await db.flush()
    return secret


async def deactivate(db: AsyncSession, subscription: WebhookSubscription, *, actor: str = "internal") -> None:
    subscription.is_active = False
    subscription.updated_by = actor
    await db.flush()


async def delete_subscription(db: AsyncSession, subscription: WebhookSubscription) -> None:
    # delivery rows are kept (audit history)
    await db.delete(subscription)
    await db.flush()


async def touch_last_triggered(db: AsyncSession, subscription_id: str, *, at: datetime) -> None:
    await db.execute(
        update(WebhookSubscription)
        .where(WebhookSubscription.id == subscription_id)
        .values(last_triggered_at=at)
    )
