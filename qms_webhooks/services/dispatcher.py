from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qms_webhooks.core.clock import Clock, utcnow
from qms_webhooks.models.webhook_subscription import WebhookSubscription
from qms_webhooks.services import delivery_ledger, subscription_registry
from qms_webhooks.services.delivery_executor import DeliveryExecutor
from qms_webhooks.services.delivery_state import apply_outcome, mark_interrupted
from qms_webhooks.services.webhook_payload import build_payload


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BranchResult:
    subscription_id: str
    delivery_id: str | None
    status: str | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class PublishReport:
    event_type: str
    entity_type: str
    entity_id: int
    branches: list[BranchResult] = field(default_factory=list)
    error: str | None = None

    @property
    def matched(self) -> int:
        return len(self.branches)

    def count(self, status: str) -> int:
        return sum(1 for b in self.branches if b.status == status)


class WebhookDispatcher:
    """
    Entry point for the business layer: publish() fans an event out to every
    matching active subscription, one concurrent branch per subscription.

    publish() never raises. Each branch reports a BranchResult, and the
    aggregated PublishReport is logged and returned.
    """

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        executor: DeliveryExecutor,
        clock: Clock = utcnow,
    ):
        self._sessions = session_factory
        self._executor = executor
        self._clock = clock
        self._background: set[asyncio.Task] = set()

    async def publish(
        self,
        event_type: str,
        entity_type: str,
        entity_id: int,
        data: Mapping[str, Any],
    ) -> PublishReport:
        report = PublishReport(event_type=event_type, entity_type=entity_type, entity_id=entity_id)

        try:
            async with self._sessions() as db:
                subscriptions = await subscription_registry.find_active_by_event(db, event_type)
        except Exception as e:
            log.exception("publish %s: could not resolve subscriptions", event_type)
            report.error = f"{type(e).__name__}: {e}"
            return report

        if not subscriptions:
            log.info("publish %s: no active subscriptions", event_type)
            return report

        try:
            payload = build_payload(event_type=event_type, timestamp=self._clock(), data=data)
        except Exception as e:
            log.exception("publish %s: payload could not be serialized", event_type)
            report.error = f"{type(e).__name__}: {e}"
            return report

        report.branches = list(await asyncio.gather(*(
            self._deliver(sub, event_type, entity_type, entity_id, payload) for sub in subscriptions
        )))

        failed = [b for b in report.branches if not b.ok]
        log.info(
            "publish %s %s#%s: %d subscriptions, %d success, %d retrying, %d failed, %d errors",
            event_type, entity_type, entity_id, report.matched,
            report.count("success"), report.count("retrying"), report.count("failed"), len(failed),
        )
        return report

    def publish_nowait(
        self,
        event_type: str,
        entity_type: str,
        entity_id: int,
        data: Mapping[str, Any],
    ) -> asyncio.Task:
        """Fire-and-forget variant; the task is tracked until it finishes."""
        task = asyncio.create_task(self.publish(event_type, entity_type, entity_id, data))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def _deliver(
        self,
        subscription: WebhookSubscription,
        event_type: str,
        entity_type: str,
        entity_id: int,
        payload: str,
    ) -> BranchResult:
        delivery_id: str | None = None
        try:
            async with self._sessions() as db:
                delivery = await delivery_ledger.create_pending(
                    db,
                    subscription=subscription,
                    event_type=event_type,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    payload=payload,
                    now=self._clock(),
                )
                await db.commit()
            delivery_id = delivery.id

            # no DB connection is held while waiting on the subscriber
            outcome = await self._executor.attempt(subscription, delivery)

            async with self._sessions() as db:
                row = await delivery_ledger.get_delivery(db, delivery_id)
                if row is None:
                    raise LookupError(f"delivery {delivery_id} vanished")
                now = self._clock()
                apply_outcome(row, subscription, outcome, now=now)
                await subscription_registry.touch_last_triggered(db, subscription.id, at=now)
                await db.commit()
                status = row.status

            if outcome.success:
                log.info("webhook %s delivered to subscription %s", event_type, subscription.id)
            else:
                log.warning(
                    "webhook %s to subscription %s failed (%s), status=%s",
                    event_type, subscription.id, outcome.error_message, status,
                )
            return BranchResult(subscription_id=subscription.id, delivery_id=delivery_id, status=status)
        except Exception as e:
            log.exception("webhook %s to subscription %s: delivery bookkeeping failed", event_type, subscription.id)
            error = f"{type(e).__name__}: {e}"
            if delivery_id is not None:
                await self._recover_pending(delivery_id, subscription, error)
            return BranchResult(
                subscription_id=subscription.id,
                delivery_id=delivery_id,
                status=None,
                error=error,
            )

    async def _recover_pending(self, delivery_id: str, subscription: WebhookSubscription, error: str) -> None:
        # best effort: a row left pending would never be picked up again
        try:
            async with self._sessions() as db:
                row = await delivery_ledger.get_delivery(db, delivery_id)
                if row is not None and mark_interrupted(row, subscription, error, now=self._clock()):
                    await db.commit()
                    log.warning("delivery %s handed to retries after an interrupted send", delivery_id)
        except Exception:
            log.exception("delivery %s could not be recovered and stays pending", delivery_id)
