from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qms_webhooks.core.clock import Clock, as_utc, utcnow
from qms_webhooks.models.webhook_delivery import STATUS_RETRYING
from qms_webhooks.services import delivery_ledger, subscription_registry
from qms_webhooks.services.delivery_executor import DeliveryExecutor
from qms_webhooks.services.delivery_state import apply_outcome, mark_subscription_gone
from qms_webhooks.services.scheduler import PeriodicScheduler, Sleep


log = logging.getLogger(__name__)

RETRY_JOB = "webhook_retries"
RETENTION_JOB = "webhook_retention"


@dataclass
class TickReport:
    due: int = 0
    processed: int = 0
    errors: int = 0
    statuses: dict[str, int] = field(default_factory=dict)


class RetryScheduler:
    """
    Periodically re-sends deliveries whose backoff has elapsed.

    Each tick takes a batch of due 'retrying' rows and processes them with
    bounded concurrency; one row failing never stops the others.
    Within one process a delivery is only ever in flight once; the write
    after a send is skipped if another writer advanced the row meanwhile.
    """

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        executor: DeliveryExecutor,
        clock: Clock = utcnow,
        interval_seconds: float = 120.0,
        batch_size: int = 100,
        concurrency: int = 5,
        retention_days: int = 0,
        retention_interval_seconds: float = 86400.0,
        sleep: Sleep = asyncio.sleep,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._sessions = session_factory
        self._executor = executor
        self._clock = clock
        self._batch_size = batch_size
        self._concurrency = concurrency
        self._retention_days = retention_days
        self._in_flight: set[str] = set()

        self._scheduler = PeriodicScheduler(sleep=sleep)
        self._scheduler.add_job(RETRY_JOB, interval_seconds, self.run_once)
        if retention_days > 0:
            self._scheduler.add_job(RETENTION_JOB, retention_interval_seconds, self.purge_expired)

    # lifecycle
    def start(self) -> None:
        self._scheduler.start()

    async def stop(self) -> None:
        await self._scheduler.stop()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def status(self) -> dict:
        return self._scheduler.status()

    async def run_once(self) -> TickReport:
        report = TickReport()
        async with self._sessions() as db:
            ids = await delivery_ledger.find_due_retry_ids(db, now=self._clock(), limit=self._batch_size)

        report.due = len(ids)
        if not ids:
            return report

        log.info("retries: %d deliveries due", len(ids))
        sem = asyncio.Semaphore(self._concurrency)

        async def _guarded(delivery_id: str) -> str | None:
            async with sem:
                try:
                    return await self.process_delivery(delivery_id)
                except Exception:
                    log.exception("retries: delivery %s could not be processed", delivery_id)
                    report.errors += 1
                    return None

        for status in await asyncio.gather(*(_guarded(i) for i in ids)):
            if status is None:
                continue
            report.processed += 1
            report.statuses[status] = report.statuses.get(status, 0) + 1

        log.info(
            "retries: processed %d/%d (%s), %d errors",
            report.processed, report.due, report.statuses, report.errors,
        )
        return report

    async def process_delivery(self, delivery_id: str) -> str | None:
        """
        Run one retry for a due delivery. Returns the new status, or None when
        the row is missing, not retrying, not yet due or already being sent.
        """
        if delivery_id in self._in_flight:
            log.info("retries: delivery %s already in flight, skipping", delivery_id)
            return None
        self._in_flight.add(delivery_id)
        try:
            return await self._process(delivery_id)
        finally:
            self._in_flight.discard(delivery_id)

    async def _process(self, delivery_id: str) -> str | None:
        async with self._sessions() as db:
            delivery = await delivery_ledger.get_delivery(db, delivery_id)
            if delivery is None or delivery.status != STATUS_RETRYING:
                return None
            if delivery.next_retry_at is None or as_utc(delivery.next_retry_at) > as_utc(self._clock()):
                return None

            subscription = await subscription_registry.find_by_id(db, delivery.subscription_id)
            if subscription is None or not subscription.is_active:
                # no send: an inactive subscription does not spend retry budget
                mark_subscription_gone(delivery)
                await db.commit()
                log.warning("retries: delivery %s failed, subscription %s inactive or deleted",
                            delivery.id, delivery.subscription_id)
                return delivery.status

            seen_attempt = delivery.attempt
            # release the connection while waiting on the subscriber
            await db.commit()

        outcome = await self._executor.attempt(subscription, delivery)

        async with self._sessions() as db:
            row = await delivery_ledger.get_delivery(db, delivery_id)
            if row is None:
                raise LookupError(f"delivery {delivery_id} vanished during retry")
            if row.status != STATUS_RETRYING or row.attempt != seen_attempt:
                log.warning("retries: delivery %s changed during send (attempt %d -> %d, status=%s), result dropped",
                            delivery_id, seen_attempt, row.attempt, row.status)
                return None
            apply_outcome(row, subscription, outcome, now=self._clock())
            await db.commit()

        if outcome.success:
            log.info("retries: delivery %s succeeded on attempt %d", row.id, row.attempt)
        else:
            log.warning("retries: delivery %s attempt %d/%d failed (%s), status=%s",
                        row.id, row.attempt, row.max_attempts, outcome.error_message, row.status)
        return row.status

    async def purge_expired(self) -> int:
        if self._retention_days <= 0:
            return 0
        async with self._sessions() as db:
            n = await delivery_ledger.purge_terminal_older_than(db, now=self._clock(), days=self._retention_days)
            await db.commit()
        if n:
            log.info("retention: removed %d deliveries older than %d days", n, self._retention_days)
        return n
