from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from qms_webhooks.models.audit_log import AuditLog
from qms_webhooks.services.redaction import redact_detail


log = logging.getLogger(__name__)


async def audit(
    db: AsyncSession,
    *,
    actor: str | None,
    action: str,
    target_type: str | None = None,
    target_id: str | None = None,
    detail: dict | None = None,
) -> AuditLog:
    """Record an admin action in the caller's transaction; committed with the change it describes."""
    row = AuditLog(
        actor=actor,
        action=action,
        target_type=target_type,
        target_id=target_id,
        detail=redact_detail(detail or {}),
    )
    db.add(row)
    log.info("audit: %s %s %s:%s", actor, action, target_type, target_id)
    return row
