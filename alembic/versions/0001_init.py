"""initial tables

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

ORDER_STATUS = sa.Enum(
    "AWAITING_DEPOSIT", "OPEN", "MATCHING", "SCHEDULED", "IN_PROGRESS", "CLOSING_SUBMITTED",
    "FINAL_AMOUNT_CONFIRMED", "BALANCE_PAID", "SETTLEMENT_PAID", "CLOSED", "CANCELLED",
    name="orderstatus",
)
ASSIGNMENT_MODE = sa.Enum("OPEN", "DIRECT", name="assignmentmode")
# Enum columns persist member names
CATEGORY = sa.Enum("PARCEL", "OTHER", "COLD", name="category")
APPLICATION_STATUS = sa.Enum("APPLIED", "APPROVED", "REJECTED", "SCHEDULED", "IN_PROGRESS", name="applicationstatus")
CLOSING_STATUS = sa.Enum("SUBMITTED", "APPROVED", name="closingstatus")
PAYMENT_KIND = sa.Enum("DEPOSIT", "BALANCE", "REFUND", name="paymentkind")
REFUND_KEY = sa.Enum("BEFORE_MATCHING", "AFTER_MATCHING", name="refundpolicykey")
NOTIFICATION_STATUS = sa.Enum("PENDING", "SENDING", "SENT", "FAILED", name="notificationstatus")


def upgrade():
    op.create_table(
        "enterprise_accounts",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("contact_phone", sa.String(length=64)),
        sa.Column("commission_rate", sa.Integer),
        sa.Column("created_at", sa.DateTime, server_default=sa.text("CURRENT_TIMESTAMP")),
    )

    op.create_table(
        "pricing_policies",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("courier_name", sa.String(length=100), nullable=False),
        sa.Column("category", CATEGORY, nullable=False),
        sa.Column("base_price_per_unit", sa.Integer, server_default="0"),
        sa.Column("min_total", sa.Integer, server_default="0"),
        sa.Column("urgent_surcharge_rate", sa.Integer, server_default="0"),  # percent
        sa.Column("commission_rate", sa.Integer, server_default="0"),  # percent
        sa.Column("etc_price_per_unit", sa.Integer, server_default="0"),
        sa.Column("is_default", sa.Boolean, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_pricing_policies_courier_name", "pricing_policies", ["courier_name"], unique=True)
    op.create_index("ix_pricing_policies_category", "pricing_policies", ["category"])

    op.create_table(
        "refund_policies",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("key", REFUND_KEY, nullable=False, unique=True),
        sa.Column("refund_rate", sa.Integer, nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("updated_by", sa.String(length=64)),
        sa.Column("updated_at", sa.DateTime, server_default=sa.text("CURRENT_TIMESTAMP")),
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("order_number", sa.String(length=12), nullable=False),
        sa.Column("requester_id", sa.String(length=64), nullable=False),
        sa.Column("enterprise_id", sa.Integer, sa.ForeignKey("enterprise_accounts.id")),
        sa.Column("assignment_mode", ASSIGNMENT_MODE, nullable=False),
        sa.Column("status", ORDER_STATUS, nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("category", CATEGORY, nullable=False),
        sa.Column("courier_name", sa.String(length=100)),
        sa.Column("delivery_area", sa.String(length=200)),
        sa.Column("is_urgent", sa.Boolean, server_default=sa.false()),
        sa.Column("scheduled_date", sa.Date),
        sa.Column("scheduled_end_date", sa.Date),
        sa.Column("quantity", sa.Integer, server_default="0"),
        sa.Column("freight", sa.Integer),
        sa.Column("base_price_per_unit", sa.Integer, server_default="0"),
        sa.Column("unit_price", sa.Integer, server_default="0"),
        sa.Column("min_total_applied", sa.Boolean, server_default=sa.false()),
        sa.Column("urgent_applied", sa.Boolean, server_default=sa.false()),
        sa.Column("total_amount", sa.Integer, server_default="0"),
        sa.Column("deposit_rate", sa.Float, server_default="0"),
        sa.Column("deposit_amount", sa.Integer, server_default="0"),
        sa.Column("balance_amount", sa.Integer, server_default="0"),
        sa.Column("balance_due_date", sa.Date),
        sa.Column("commission_rate", sa.Integer, server_default="0"),
        sa.Column("etc_price_per_unit", sa.Integer, server_default="0"),
        sa.Column("final_amount_locked", sa.Boolean, server_default=sa.false()),
        sa.Column("max_helpers", sa.Integer, server_default="3"),
        sa.Column("current_helpers", sa.Integer, server_default="0"),
        sa.Column("refund_rate", sa.Integer),
        sa.Column("refund_amount", sa.Integer),
        sa.Column("cancel_reason", sa.Text),
        sa.Column("cancelled_at", sa.DateTime),
        sa.Column("balance_paid_at", sa.DateTime),
        sa.Column("closed_at", sa.DateTime),
        sa.CheckConstraint("current_helpers <= max_helpers", name="ck_orders_helper_capacity"),
    )
    op.create_index("ix_orders_order_number", "orders", ["order_number"], unique=True)
    op.create_index("ix_orders_requester_id", "orders", ["requester_id"])
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_created_at", "orders", ["created_at"])

    op.create_table(
        "helper_applications",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("order_id", sa.Integer, sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("helper_id", sa.String(length=64), nullable=False),
        sa.Column("status", APPLICATION_STATUS, nullable=False),
        sa.Column("message", sa.Text),
        sa.Column("expected_arrival", sa.String(length=64)),
        sa.Column("applied_at", sa.DateTime, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("approved_at", sa.DateTime),
        sa.Column("removed_at", sa.DateTime),
        sa.UniqueConstraint("order_id", "helper_id", name="uq_application_order_helper"),
    )
    op.create_index("ix_helper_applications_order_id", "helper_applications", ["order_id"])
    op.create_index("ix_helper_applications_helper_id", "helper_applications", ["helper_id"])

    op.create_table(
        "closing_reports",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("order_id", sa.Integer, sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("helper_id", sa.String(length=64), nullable=False),
        sa.Column("delivered_count", sa.Integer, server_default="0"),
        sa.Column("returned_count", sa.Integer, server_default="0"),
        sa.Column("misc_count", sa.Integer, server_default="0"),
        sa.Column("extra_costs", sa.JSON),
        sa.Column("attachments", sa.JSON),
        sa.Column("status", CLOSING_STATUS, nullable=False),
        sa.Column("superseded", sa.Boolean, server_default=sa.false()),
        sa.Column("vat_amount", sa.Integer),
        sa.Column("final_amount", sa.Integer),
        sa.Column("submitted_at", sa.DateTime, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("approved_at", sa.DateTime),
    )
    op.create_index("ix_closing_reports_order_id", "closing_reports", ["order_id"])

    op.create_table(
        "contracts",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("order_id", sa.Integer, sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("helper_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), server_default="active"),  # active/cancelled
        sa.Column("created_at", sa.DateTime, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("cancelled_at", sa.DateTime),
    )
    op.create_index("ix_contracts_order_id", "contracts", ["order_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("order_id", sa.Integer, sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("kind", PAYMENT_KIND, nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("provider", sa.String(length=32), server_default="manual"),
        sa.Column("transaction_id", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("provider", "transaction_id", name="uq_payment_provider_txn"),
    )
    op.create_index("ix_payments_order_id", "payments", ["order_id"])
    op.create_index("ix_payments_created_at", "payments", ["created_at"])

    op.create_table(
        "settlements",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("order_id", sa.Integer, sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("helper_id", sa.String(length=64), nullable=False),
        sa.Column("gross_amount", sa.Integer, nullable=False),
        sa.Column("platform_fee", sa.Integer, nullable=False),
        sa.Column("damage_deduction", sa.Integer, nullable=False, server_default="0"),
        sa.Column("payout_amount", sa.Integer, nullable=False),
        sa.Column("status", sa.String(length=16), server_default="paid"),
        sa.Column("paid_at", sa.DateTime, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("order_id", "helper_id", name="uq_settlement_order_helper"),
    )
    op.create_index("ix_settlements_order_id", "settlements", ["order_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("recipient_id", sa.String(length=64), nullable=False),
        sa.Column("kind", sa.String(length=64), nullable=False),
        sa.Column("order_id", sa.Integer, sa.ForeignKey("orders.id")),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("dedupe_key", sa.String(length=200), nullable=False, unique=True),
        sa.Column("status", NOTIFICATION_STATUS, nullable=False),
        sa.Column("attempts", sa.Integer, server_default="0"),
        sa.Column("last_error", sa.Text),
        sa.Column("created_at", sa.DateTime, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("sent_at", sa.DateTime),
    )
    op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])
    op.create_index("ix_notifications_status", "notifications", ["status"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("order_id", sa.Integer, sa.ForeignKey("orders.id")),
        sa.Column("order_number", sa.String(length=12)),
        sa.Column("actor_id", sa.String(length=64)),
        sa.Column("actor_role", sa.String(length=16)),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("meta", sa.Text),
        sa.Column("created_at", sa.DateTime, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_audit_logs_order_id", "audit_logs", ["order_id"])

    op.create_table(
        "idempotency_keys",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("key", sa.String(length=128), nullable=False),
        sa.Column("method", sa.String(length=8), nullable=False),
        sa.Column("path", sa.String(length=256), nullable=False),
        sa.Column("status_code", sa.Integer, server_default="102"),
        sa.Column("response_json", sa.JSON),
        sa.Column("created_at", sa.DateTime, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("key", "method", "path", name="uq_idempotency_key"),
    )


def downgrade():
    for table in ("idempotency_keys", "audit_logs", "notifications", "settlements", "payments", "contracts",
                  "closing_reports", "helper_applications", "orders", "refund_policies", "pricing_policies",
                  "enterprise_accounts"):
        op.drop_table(table)
    bind = op.get_bind()
    for enum in (NOTIFICATION_STATUS, REFUND_KEY, PAYMENT_KIND, CLOSING_STATUS, APPLICATION_STATUS,
                 CATEGORY, ASSIGNMENT_MODE, ORDER_STATUS):
        enum.drop(bind, checkfirst=True)
