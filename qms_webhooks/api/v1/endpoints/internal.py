from fastapi import APIRouter, Depends

from qms_webhooks.api.deps import get_dispatcher, get_retry_scheduler
from qms_webhooks.schemas.webhook import PublishBranchOut, PublishEventIn, PublishEventOut, RetryTickOut
from qms_webhooks.services.dispatcher import WebhookDispatcher
from qms_webhooks.services.internal_admin import require_internal_admin
from qms_webhooks.services.retry_scheduler import RetryScheduler

router = APIRouter()

@router.post("/internal/events", response_model=PublishEventOut, dependencies=[Depends(require_internal_admin)])
async def internal_publish_event(
    body: PublishEventIn,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> PublishEventOut:
    report = await dispatcher.publish(body.event_type, body.entity_type, body.entity_id, body.data)
    return PublishEventOut(
        matched=report.matched,
        branches=[
            PublishBranchOut(
                subscription_id=b.subscription_id,
                delivery_id=b.delivery_id,
                status=b.status,
                error=b.error,
            )
            for b in report.branches
        ],
    )

@router.post("/internal/webhooks/retries/run", response_model=RetryTickOut, dependencies=[Depends(require_internal_admin)])
async def internal_run_retries(retries: RetryScheduler = Depends(get_retry_scheduler)) -> RetryTickOut:
    report = await retries.run_once()
    return RetryTickOut(
        due=report.due,
        processed=report.processed,
        errors=report.errors,
        statuses=report.statuses,
    )
