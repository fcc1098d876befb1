import uuid
from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime


class Base(DeclarativeBase):
    pass


def prefixed_id(prefix: str) -> str:
    # e.g. whs_3f2a...; the prefix tells subscriptions, deliveries and audit rows apart in logs
    return f"{prefix}_{uuid.uuid4().hex}"


def id_column(prefix: str) -> Mapped[str]:
    return mapped_column(String, primary_key=True, default=lambda: prefixed_id(prefix))


class AuditMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # admin actor that last wrote the subscription
    created_by: Mapped[str | None] = mapped_column(nullable=True)
    updated_by: Mapped[str | None] = mapped_column(nullable=True)
