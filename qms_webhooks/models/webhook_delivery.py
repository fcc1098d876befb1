from datetime import datetime

from sqlalchemy import JSON, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from qms_webhooks.models.base import Base, id_column

STATUS_PENDING = "pending"
STATUS_RETRYING = "retrying"
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"

TERMINAL_STATUSES = frozenset({STATUS_SUCCESS, STATUS_FAILED})


class WebhookDelivery(Base):
    """One event x subscription delivery task, mutated across retries."""

    __tablename__ = "webhook_deliveries"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        Index("ix_webhook_deliveries_status_next_retry_at", "status", "next_retry_at"),
        Index("ix_webhook_deliveries_entity", "entity_type", "entity_id"),
    )

    id: Mapped[str] = id_column("whd")

    # No FK: history outlives the subscription it was delivered for.
    subscription_id: Mapped[str] = mapped_column(String, nullable=False, index=True)

    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)

    request_url: Mapped[str] = mapped_column(String(2000), nullable=False)
    # exact bytes (utf-8) that get signed and sent; never re-serialized
    request_payload: Mapped[str] = mapped_column(Text, nullable=False)
    # headers of the last attempt as sent, sensitive values masked
    request_headers: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    response_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    status: Mapped[str] = mapped_column(String(30), nullable=False, default=STATUS_PENDING)  # pending/retrying/success/failed
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
