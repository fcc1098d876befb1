import hmac
import logging

from fastapi import Header, HTTPException

from qms_webhooks.core.config import settings


log = logging.getLogger(__name__)

DEFAULT_ACTOR = "internal"


async def require_internal_admin(
    x_internal_admin_key: str | None = Header(default=None),
    x_admin_actor: str | None = Header(default=None, max_length=120),
) -> str:
    """
    Gate for the admin and internal routes. Returns the actor recorded in the
    audit trail: X-Admin-Actor when the caller names one, else "internal".
    """
    expected = settings.internal_admin_key.encode("utf-8")
    given = (x_internal_admin_key or "").encode("utf-8")
    if not x_internal_admin_key or not hmac.compare_digest(given, expected):
        log.warning("admin request rejected: %s internal admin key", "missing" if not x_internal_admin_key else "wrong")
        raise HTTPException(status_code=403, detail="Internal admin key required")
    return (x_admin_actor or "").strip() or DEFAULT_ACTOR
