"""create customers, preferences, promotions, delivery queue, and trigger tables

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20261018_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "customers",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("full_name", sa.String(length=120), nullable=False),
        sa.Column("preferred_name", sa.String(length=120), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=40), nullable=True),
        sa.Column("birthday", sa.Date(), nullable=True),
        sa.Column("last_service_date", sa.Date(), nullable=True),
        sa.Column("lifetime_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("total_jobs", sa.Integer(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_customers_email", "customers", ["email"], unique=False)
    op.create_index("ix_customers_phone", "customers", ["phone"], unique=False)
    op.create_index("ix_customers_last_service_date", "customers", ["last_service_date"], unique=False)
    op.create_index("ix_customers_lifetime_value", "customers", ["lifetime_value"], unique=False)

    op.create_table(
        "customer_communication_preferences",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("customer_id", sa.String(length=36), nullable=False),
        sa.Column("email_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sms_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("portal_notifications_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("phone_calls_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("marketing_emails", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("promotional_messages", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("survey_requests", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("do_not_contact", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("opted_out_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("opt_out_reason", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("customer_id"),
    )

    op.create_table(
        "communication_preference_violations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("customer_id", sa.String(length=36), nullable=False),
        sa.Column("violation_type", sa.String(length=50), nullable=False),
        sa.Column("attempted_channel", sa.String(length=20), nullable=False),
        sa.Column("attempted_message_type", sa.String(length=50), nullable=True),
        sa.Column("blocked", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("details_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_communication_preference_violations_customer_id",
        "communication_preference_violations",
        ["customer_id"],
        unique=False,
    )
    op.create_index(
        "ix_preference_violations_customer_created_at",
        "communication_preference_violations",
        ["customer_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "promotions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("promotion_type", sa.String(length=30), nullable=False),
        sa.Column("discount_value", sa.Numeric(10, 2), nullable=True),
        sa.Column("discount_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("free_addon_service", sa.String(length=100), nullable=True),
        sa.Column("target_audience", sa.String(length=30), nullable=False, server_default="all_customers"),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("max_redemptions", sa.Integer(), nullable=True),
        sa.Column("current_redemptions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("delivery_channels", sa.JSON(), nullable=True),
        sa.Column("auto_deliver", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("promo_code", sa.String(length=50), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("terms_and_conditions", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("promo_code"),
    )
    op.create_index("ix_promotions_status_dates", "promotions", ["status", "start_date", "end_date"], unique=False)

    op.create_table(
        "promotion_deliveries",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("promotion_id", sa.String(length=36), nullable=False),
        sa.Column("customer_id", sa.String(length=36), nullable=False),
        sa.Column("delivery_channel", sa.String(length=20), nullable=False),
        sa.Column("claim_code", sa.String(length=50), nullable=False),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("viewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["promotion_id"], ["promotions.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "promotion_id",
            "customer_id",
            "delivery_channel",
            name="uq_promotion_deliveries_promotion_customer_channel",
        ),
    )
    op.create_index("ix_promotion_deliveries_promotion_id", "promotion_deliveries", ["promotion_id"], unique=False)
    op.create_index("ix_promotion_deliveries_customer_id", "promotion_deliveries", ["customer_id"], unique=False)
    op.create_index("ix_promotion_deliveries_claim_code", "promotion_deliveries", ["claim_code"], unique=False)
    op.create_index(
        "ix_promotion_deliveries_customer_delivered_at",
        "promotion_deliveries",
        ["customer_id", "delivered_at"],
        unique=False,
    )

    op.create_table(
        "promotion_delivery_queue",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("promotion_id", sa.String(length=36), nullable=False),
        sa.Column("customer_id", sa.String(length=36), nullable=False),
        sa.Column("delivery_method", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["promotion_id"], ["promotions.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "promotion_id",
            "customer_id",
            "delivery_method",
            name="uq_promotion_delivery_queue_promotion_customer_method",
        ),
    )
    op.create_index(
        "ix_promotion_delivery_queue_promotion_id",
        "promotion_delivery_queue",
        ["promotion_id"],
        unique=False,
    )
    op.create_index(
        "ix_promotion_delivery_queue_customer_id",
        "promotion_delivery_queue",
        ["customer_id"],
        unique=False,
    )
    op.create_index(
        "ix_promotion_delivery_queue_status_created_at",
        "promotion_delivery_queue",
        ["status", "created_at"],
        unique=False,
    )

    op.create_table(
        "promotion_triggers",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("trigger_name", sa.String(length=50), nullable=False),
        sa.Column("trigger_type", sa.String(length=30), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("trigger_conditions", sa.JSON(), nullable=True),
        sa.Column("promotion_template", sa.JSON(), nullable=False),
        sa.Column("delivery_channels", sa.JSON(), nullable=True),
        sa.Column("auto_deliver", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("execution_frequency", sa.String(length=20), nullable=False, server_default="daily"),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_executions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_deliveries", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("trigger_name"),
    )
    op.create_index("ix_promotion_triggers_trigger_type", "promotion_triggers", ["trigger_type"], unique=False)
    op.create_index("ix_promotion_triggers_active_type", "promotion_triggers", ["active", "trigger_type"], unique=False)

    op.create_table(
        "automated_promotion_deliveries",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("promotion_trigger_id", sa.String(length=36), nullable=False),
        sa.Column("customer_id", sa.String(length=36), nullable=False),
        sa.Column("promotion_id", sa.String(length=36), nullable=False),
        sa.Column("triggered_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["promotion_trigger_id"], ["promotion_triggers.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.ForeignKeyConstraint(["promotion_id"], ["promotions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "promotion_trigger_id",
            "customer_id",
            "promotion_id",
            name="uq_automated_promotion_deliveries_trigger_customer_promotion",
        ),
    )
    op.create_index(
        "ix_automated_promotion_deliveries_promotion_trigger_id",
        "automated_promotion_deliveries",
        ["promotion_trigger_id"],
        unique=False,
    )
    op.create_index(
        "ix_automated_promotion_deliveries_customer_id",
        "automated_promotion_deliveries",
        ["customer_id"],
        unique=False,
    )
    op.create_index(
        "ix_automated_promotion_deliveries_promotion_id",
        "automated_promotion_deliveries",
        ["promotion_id"],
        unique=False,
    )
    op.create_index(
        "ix_automated_promotion_deliveries_trigger_triggered_at",
        "automated_promotion_deliveries",
        ["promotion_trigger_id", "triggered_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_automated_promotion_deliveries_trigger_triggered_at", table_name="automated_promotion_deliveries")
    op.drop_index("ix_automated_promotion_deliveries_promotion_id", table_name="automated_promotion_deliveries")
    op.drop_index("ix_automated_promotion_deliveries_customer_id", table_name="automated_promotion_deliveries")
    op.drop_index(
        "ix_automated_promotion_deliveries_promotion_trigger_id",
        table_name="automated_promotion_deliveries",
    )
    op.drop_table("automated_promotion_deliveries")

    op.drop_index("ix_promotion_triggers_active_type", table_name="promotion_triggers")
    op.drop_index("ix_promotion_triggers_trigger_type", table_name="promotion_triggers")
    op.drop_table("promotion_triggers")

    op.drop_index("ix_promotion_delivery_queue_status_created_at", table_name="promotion_delivery_queue")
    op.drop_index("ix_promotion_delivery_queue_customer_id", table_name="promotion_delivery_queue")
    op.drop_index("ix_promotion_delivery_queue_promotion_id", table_name="promotion_delivery_queue")
    op.drop_table("promotion_delivery_queue")

    op.drop_index("ix_promotion_deliveries_customer_delivered_at", table_name="promotion_deliveries")
    op.drop_index("ix_promotion_deliveries_claim_code", table_name="promotion_deliveries")
    op.drop_index("ix_promotion_deliveries_customer_id", table_name="promotion_deliveries")
    op.drop_index("ix_promotion_deliveries_promotion_id", table_name="promotion_deliveries")
    op.drop_table("promotion_deliveries")

    op.drop_index("ix_promotions_status_dates", table_name="promotions")
    op.drop_table("promotions")

    op.drop_index("ix_preference_violations_customer_created_at", table_name="communication_preference_violations")
    op.drop_index(
        "ix_communication_preference_violations_customer_id",
        table_name="communication_preference_violations",
    )
    op.drop_table("communication_preference_violations")
    op.drop_table("customer_communication_preferences")

    op.drop_index("ix_customers_lifetime_value", table_name="customers")
    op.drop_index("ix_customers_last_service_date", table_name="customers")
    op.drop_index("ix_customers_phone", table_name="customers")
    op.drop_index("ix_customers_email", table_name="customers")
    op.drop_table("customers")
