from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0004_delivery_request_headers"
down_revision = "0003_audit_logs"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("webhook_deliveries", sa.Column("request_headers", sa.JSON(), nullable=True))


def downgrade() -> None:
    op.drop_column("webhook_deliveries", "request_headers")
