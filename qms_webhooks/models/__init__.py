from qms_webhooks.models.base import Base  # noqa: F401

from qms_webhooks.models.webhook_subscription import WebhookSubscription  # noqa: F401
from qms_webhooks.models.webhook_delivery import WebhookDelivery  # noqa: F401
from qms_webhooks.models.audit_log import AuditLog  # noqa: F401
