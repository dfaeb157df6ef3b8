"""Create plans, subscriptions, usage counters and webhook bookkeeping."""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "001_billing_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "plans",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column(
            "monthly_generation_quota",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'gbp'")),
        sa.Column(
            "billing_cadence",
            sa.String(),
            nullable=False,
            server_default=sa.text("'monthly'"),
        ),
        sa.Column("stripe_price_id", sa.String(), nullable=True, unique=True),
    )

    plan_table = sa.table(
        "plans",
        sa.column("id", sa.String()),
        sa.column("name", sa.String()),
        sa.column("monthly_generation_quota", sa.Integer()),
        sa.column("price_cents", sa.Integer()),
    )

    # Price ids are deployment specific and written by the startup sync.
    op.bulk_insert(
        plan_table,
        [
            {"id": "free", "name": "Free", "monthly_generation_quota": 0, "price_cents": 0},
            {"id": "trial", "name": "Trial", "monthly_generation_quota": 10, "price_cents": 0},
            {
                "id": "starter",
                "name": "Starter",
                "monthly_generation_quota": 50,
                "price_cents": 2900,
            },
            {"id": "pro", "name": "Pro", "monthly_generation_quota": 200, "price_cents": 9900},
        ],
    )

    op.create_table(
        "subscriptions",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("plan_id", sa.String(), sa.ForeignKey("plans.id"), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("stripe_customer_id", sa.String(), nullable=True, unique=True),
        sa.Column("stripe_subscription_id", sa.String(), nullable=True, unique=True),
        sa.Column("stripe_price_id", sa.String(), nullable=True),
        sa.Column("trial_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_subscriptions_stripe_customer_id", "subscriptions", ["stripe_customer_id"]
    )

    op.create_table(
        "usage_counters",
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("subscriptions.user_id", ondelete="CASCADE"),
            primary_key=True,
            nullable=False,
        ),
        sa.Column("used", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("cycle_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("used >= 0", name="ck_usage_counters_used_non_negative"),
    )

    op.create_table(
        "stripe_events",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "billing_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("stripe_invoice_id", sa.String(), nullable=False, unique=True),
        sa.Column("amount", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("invoice_pdf_url", sa.String(), nullable=True),
        sa.Column("billing_reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_billing_transactions_user_id", "billing_transactions", ["user_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_billing_transactions_user_id", table_name="billing_transactions")
    op.drop_table("billing_transactions")
    op.drop_table("stripe_events")
    op.drop_table("usage_counters")
    op.drop_index("ix_subscriptions_stripe_customer_id", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_table("plans")
