"""canteen schema

Revision ID: 0001_canteen_schema
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_canteen_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("external_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("role", sa.Enum("ADMIN", "CANTEEN", "USER", name="user_role"), nullable=False),
        sa.Column("no_show_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_external_id", "users", ["external_id"], unique=True)

    op.create_table(
        "shifts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("break_start_time", sa.String(length=5), nullable=True),
        sa.Column("break_end_time", sa.String(length=5), nullable=True),
        sa.Column("meal_price", sa.Numeric(10, 2), nullable=False, server_default="0.00"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("shift_id", sa.Integer(), sa.ForeignKey("shifts.id"), nullable=False),
        sa.Column("order_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="ORDERED"),
        sa.Column("meal_price", sa.Numeric(10, 2), nullable=False, server_default="0.00"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("check_in_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("checked_in_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_by", sa.String(length=255), nullable=True),
        sa.Column("cancelled_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
    )
    op.create_index("ix_orders_user_id", "orders", ["user_id"])
    op.create_index("ix_orders_order_date", "orders", ["order_date"])
    op.create_index("ix_orders_shift_date_status", "orders", ["shift_id", "order_date", "status"])
    op.create_index(
        "uq_orders_user_date_live",
        "orders",
        ["user_id", "order_date"],
        unique=True,
        sqlite_where=sa.text("status != 'CANCELLED'"),
        postgresql_where=sa.text("status != 'CANCELLED'"),
    )

    op.create_table(
        "blacklist_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reason", sa.String(length=500), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_blacklist_entries_user_id", "blacklist_entries", ["user_id"])
    op.create_index(
        "uq_blacklist_user_active",
        "blacklist_entries",
        ["user_id"],
        unique=True,
        sqlite_where=sa.text("is_active = 1"),
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "holidays",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("holiday_date", sa.Date(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("shift_id", sa.Integer(), sa.ForeignKey("shifts.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_holidays_holiday_date", "holidays", ["holiday_date"])

    op.create_table(
        "ordering_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("cutoff_mode", sa.String(length=16), nullable=False, server_default="per-shift"),
        sa.Column("cutoff_days", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("cutoff_hours", sa.Integer(), nullable=False, server_default=sa.text("6")),
        sa.Column("max_order_days_ahead", sa.Integer(), nullable=False, server_default=sa.text("7")),
        sa.Column("weekly_cutoff_weekday", sa.Integer(), nullable=False, server_default=sa.text("5")),
        sa.Column("weekly_cutoff_hour", sa.Integer(), nullable=False, server_default=sa.text("17")),
        sa.Column("weekly_cutoff_minute", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("orderable_weekdays", sa.String(length=20), nullable=False, server_default="1,2,3,4,5,6"),
        sa.Column("max_weeks_ahead", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("blacklist_strikes", sa.Integer(), nullable=False, server_default=sa.text("3")),
        sa.Column("blacklist_duration_days", sa.Integer(), nullable=False, server_default=sa.text("7")),
    )

    op.create_table(
        "app_settings",
        sa.Column("key", sa.String(length=100), primary_key=True),
        sa.Column("value", sa.String(length=100), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("actor_identifier", sa.String(length=255), nullable=False),
        sa.Column("action_type", sa.String(length=64), nullable=False),
        sa.Column("entity", sa.String(length=64), nullable=True),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("before_snapshot", sa.JSON(), nullable=True),
        sa.Column("after_snapshot", sa.JSON(), nullable=True),
        sa.Column("context", sa.JSON(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("app_settings")
    op.drop_table("ordering_settings")
    op.drop_index("ix_holidays_holiday_date", table_name="holidays")
    op.drop_table("holidays")
    op.drop_index("uq_blacklist_user_active", table_name="blacklist_entries")
    op.drop_index("ix_blacklist_entries_user_id", table_name="blacklist_entries")
    op.drop_table("blacklist_entries")
    op.drop_index("uq_orders_user_date_live", table_name="orders")
    op.drop_index("ix_orders_shift_date_status", table_name="orders")
    op.drop_index("ix_orders_order_date", table_name="orders")
    op.drop_index("ix_orders_user_id", table_name="orders")
    op.drop_table("orders")
    op.drop_table("shifts")
    op.drop_table("users")
