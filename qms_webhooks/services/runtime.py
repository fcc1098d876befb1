from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qms_webhooks.core.clock import Clock, utcnow
from qms_webhooks.core.config import settings
from qms_webhooks.services.delivery_executor import DeliveryExecutor
from qms_webhooks.services.dispatcher import WebhookDispatcher
from qms_webhooks.services.http_client import WebhookHttpClient
from qms_webhooks.services.retry_scheduler import RetryScheduler
from qms_webhooks.services.scheduler import Sleep


@dataclass
class WebhookRuntime:
    http: WebhookHttpClient
    executor: DeliveryExecutor
    dispatcher: WebhookDispatcher
    retry_scheduler: RetryScheduler
    clock: Clock

    async def aclose(self) -> None:
        await self.retry_scheduler.stop()
        await self.dispatcher.drain()
        await self.http.aclose()


def build_runtime(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    clock: Clock = utcnow,
    sleep: Sleep = asyncio.sleep,
) -> WebhookRuntime:
    """Wire the delivery components from settings. Shared by the API and the worker."""
    http = WebhookHttpClient(
        timeout_seconds=settings.webhook_timeout_seconds,
        max_response_body_chars=settings.webhook_max_response_body_chars,
        default_headers={"User-Agent": settings.webhook_user_agent},
        transport=transport,
    )
    executor = DeliveryExecutor(http)
    dispatcher = WebhookDispatcher(session_factory=session_factory, executor=executor, clock=clock)
    retry_scheduler = RetryScheduler(
        session_factory=session_factory,
        executor=executor,
        clock=clock,
        interval_seconds=settings.retry_poll_seconds,
        batch_size=settings.retry_batch_size,
        concurrency=settings.retry_concurrency,
        retention_days=settings.delivery_retention_days,
        retention_interval_seconds=settings.retention_poll_seconds,
        sleep=sleep,
    )
    return WebhookRuntime(
        http=http,
        executor=executor,
        dispatcher=dispatcher,
        retry_scheduler=retry_scheduler,
        clock=clock,
    )
