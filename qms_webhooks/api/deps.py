from fastapi import Request

from qms_webhooks.core.clock import Clock, utcnow
from qms_webhooks.services.delivery_executor import DeliveryExecutor
from qms_webhooks.services.dispatcher import WebhookDispatcher
from qms_webhooks.services.retry_scheduler import RetryScheduler


# components are built once in the app lifespan and parked on app.state

def get_executor(request: Request) -> DeliveryExecutor:
    return request.app.state.executor


def get_dispatcher(request: Request) -> WebhookDispatcher:
    return request.app.state.dispatcher


def get_retry_scheduler(request: Request) -> RetryScheduler:
    return request.app.state.retry_scheduler


def get_clock(request: Request) -> Clock:
    return getattr(request.app.state, "clock", utcnow)
