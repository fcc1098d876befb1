from alembic import op
import sqlalchemy as sa

revision = "0001_webhook_subscriptions"
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        "webhook_subscriptions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("url", sa.String(length=2000), nullable=False),
        sa.Column("secret_ciphertext", sa.Text(), nullable=False),
        sa.Column("event_types", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("retry_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("retry_base_delay_seconds", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("custom_headers", sa.JSON(), nullable=True),
        sa.Column("last_triggered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("updated_by", sa.String(), nullable=True),
    )
    op.create_index("ix_webhook_subscriptions_is_active", "webhook_subscriptions", ["is_active"])

def downgrade():
    op.drop_index("ix_webhook_subscriptions_is_active", table_name="webhook_subscriptions")
    op.drop_table("webhook_subscriptions")
