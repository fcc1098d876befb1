from datetime import datetime

from sqlalchemy import JSON, Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from qms_webhooks.models.base import AuditMixin, Base, id_column


class WebhookSubscription(AuditMixin, Base):
    __tablename__ = "webhook_subscriptions"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[str] = id_column("whs")
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    url: Mapped[str] = mapped_column(String(2000), nullable=False)

    # Fernet token; plaintext is only ever returned by create / regenerate
    secret_ciphertext: Mapped[str] = mapped_column(Text, nullable=False)

    # e.g. ["ncr.created", "capa.closed"]
    event_types: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    retry_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    retry_base_delay_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=60)

    custom_headers: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    last_triggered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def wants(self, event_type: str) -> bool:
        return event_type in (self.event_types or [])
