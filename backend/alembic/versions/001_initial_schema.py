"""Initial schema: users, experiences, sessions, bookings, payments, coupons.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PAYMENT_STATUSES = "'REQUIRES_PAYMENT_METHOD', 'PROCESSING', 'SUCCEEDED', 'CANCELLED'"


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Users table
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default=sa.text("'EXPLORER'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint("role IN ('EXPLORER', 'ORGANIZER', 'ADMIN')", name="check_user_role"),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # Experiences and their sessions
    op.create_table(
        "experiences",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'USD'")),
        sa.Column("organizer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("price >= 0", name="check_experience_price_non_negative"),
    )
    op.create_index("ix_experiences_id", "experiences", ["id"])
    op.create_index("ix_experiences_organizer_id", "experiences", ["organizer_id"])

    op.create_table(
        "experience_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("experience_id", sa.Integer(), sa.ForeignKey("experiences.id"), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("price_override", sa.Numeric(10, 2), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.CheckConstraint("capacity > 0", name="check_session_capacity_positive"),
    )
    op.create_index("ix_experience_sessions_id", "experience_sessions", ["id"])
    op.create_index("ix_experience_sessions_experience_id", "experience_sessions", ["experience_id"])
    op.create_index("ix_experience_sessions_start_at", "experience_sessions", ["start_at"])

    # Bookings table (payment_id FK is added once payments exists)
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("experience_id", sa.Integer(), sa.ForeignKey("experiences.id"), nullable=False),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("experience_sessions.id"), nullable=False),
        sa.Column("explorer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("guests", sa.Integer(), nullable=False),
        sa.Column("total_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("payment_status", sa.String(30), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("guests > 0", name="check_booking_guests_positive"),
        sa.CheckConstraint("total_price >= 0", name="check_booking_total_non_negative"),
        sa.CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'CANCELLED', 'EXPIRED', 'COMPLETED')",
            name="check_booking_status",
        ),
        sa.CheckConstraint(
            f"payment_status IS NULL OR payment_status IN ({PAYMENT_STATUSES})",
            name="check_booking_payment_status",
        ),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_experience_id", "bookings", ["experience_id"])
    op.create_index("ix_bookings_explorer_id", "bookings", ["explorer_id"])
    # Every capacity check sums guests over a session's active bookings
    op.create_index("ix_bookings_session_status", "bookings", ["session_id", "status"])

    # Payments, refunds and gateway settings
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("provider", sa.String(20), nullable=False),
        sa.Column("provider_payment_id", sa.String(255), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default=sa.text("'REQUIRES_PAYMENT_METHOD'")),
        sa.Column("error_code", sa.String(100), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("receipt_url", sa.String(1000), nullable=True),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_amount", sa.Integer(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="check_payment_amount_non_negative"),
        sa.CheckConstraint(f"status IN ({PAYMENT_STATUSES})", name="check_payment_status"),
        sa.CheckConstraint("provider IN ('STRIPE', 'PAYPAL', 'PAYZONE', 'CASH')", name="check_payment_provider"),
    )
    op.create_index("ix_payments_id", "payments", ["id"])
    op.create_index("ix_payments_booking_id", "payments", ["booking_id"])
    op.create_index("ix_payments_provider_payment_id", "payments", ["provider_payment_id"])
    op.create_foreign_key("fk_bookings_payment_id", "bookings", "payments", ["payment_id"], ["id"])

    op.create_table(
        "refunds",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("provider_refund_id", sa.String(255), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="check_refund_amount_positive"),
        sa.CheckConstraint("status IN ('PENDING', 'SUCCEEDED', 'FAILED')", name="check_refund_status"),
    )
    op.create_index("ix_refunds_id", "refunds", ["id"])
    op.create_index("ix_refunds_payment_id", "refunds", ["payment_id"])

    op.create_table(
        "payment_settings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("default_provider", sa.String(20), nullable=False, server_default=sa.text("'STRIPE'")),
        sa.Column("enabled_providers", sa.JSON(), nullable=False),
        sa.Column("test_mode", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )

    # Coupons and the redemption ledger
    op.create_table(
        "coupons",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("discount_percentage", sa.Integer(), nullable=False),
        sa.Column("max_reduction_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("type", sa.String(20), nullable=False, server_default=sa.text("'INTERNAL'")),
        sa.Column("experience_id", sa.Integer(), sa.ForeignKey("experiences.id"), nullable=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("experience_sessions.id"), nullable=True),
        sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "discount_percentage >= 1 AND discount_percentage <= 100",
            name="check_coupon_percentage_range",
        ),
        sa.CheckConstraint("used_count >= 0", name="check_coupon_used_count_non_negative"),
        sa.CheckConstraint("max_uses IS NULL OR used_count <= max_uses", name="check_coupon_used_count_within_max"),
        sa.CheckConstraint("type IN ('INTERNAL', 'EXTERNAL')", name="check_coupon_type"),
    )
    op.create_index("ix_coupons_id", "coupons", ["id"])
    op.create_index("ix_coupons_code", "coupons", ["code"], unique=True)
    op.create_index("ix_coupons_experience_id", "coupons", ["experience_id"])
    op.create_index("ix_coupons_created_by_id", "coupons", ["created_by_id"])

    op.create_table(
        "coupon_usages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("coupon_id", sa.Integer(), sa.ForeignKey("coupons.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("price_before_discount", sa.Numeric(10, 2), nullable=False),
        *_timestamps(),
        # One coupon per booking, one redemption per user and coupon
        sa.UniqueConstraint("booking_id", name="uq_coupon_usage_booking"),
        sa.UniqueConstraint("coupon_id", "user_id", name="uq_coupon_usage_coupon_user"),
    )
    op.create_index("ix_coupon_usages_id", "coupon_usages", ["id"])


def downgrade() -> None:
    op.drop_table("coupon_usages")
    op.drop_table("coupons")
    op.drop_table("payment_settings")
    op.drop_table("refunds")
    op.drop_constraint("fk_bookings_payment_id", "bookings", type_="foreignkey")
    op.drop_table("payments")
    op.drop_table("bookings")
    op.drop_table("experience_sessions")
    op.drop_table("experiences")
    op.drop_table("users")
