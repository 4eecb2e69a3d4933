"""initial admissions schema

Revision ID: a0b1c2d3e4f5
Revises:
Create Date: 2026-10-18 12:00:00.000000

This migration creates:
1. Enum types for applicant, stage, decision, confirmation, payment and user statuses
2. applicants, users, otp_sessions, applicant_sessions
3. selection_records (append-only decision history)
4. confirmation_codes (one per applicant)
5. payment_orders, with a partial unique index allowing a single
   created/pending order per (applicant, payment_type)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "a0b1c2d3e4f5"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


ENUMS = {
    "applicant_status": ("active", "eliminated", "withdrawn", "confirmed"),
    "stage_status": ("pending_review", "awaiting_payment", "awaiting_confirmation"),
    "selection_decision": ("selected", "not_selected"),
    "decision_source": ("single", "bulk_import"),
    "confirmation_status": ("pending", "confirmed", "expired"),
    "payment_status": ("created", "pending", "success", "failed", "cancelled"),
    "user_role": ("admin", "jury"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    """Create all admissions tables."""
    bind = op.get_bind()
    for name in ENUMS:
        _enum(name).create(bind, checkfirst=True)

    op.create_table(
        "applicants",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("registration_id", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column("current_stage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "stage_status",
            _enum("stage_status"),
            nullable=False,
            server_default="pending_review",
        ),
        sa.Column("status", _enum("applicant_status"), nullable=False, server_default="active"),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("withdrawn_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("registration_id"),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("phone"),
        sa.CheckConstraint(
            "email IS NOT NULL OR phone IS NOT NULL", name="ck_applicants_email_or_phone"
        ),
    )
    op.create_index("ix_applicants_status", "applicants", ["status"])
    op.create_index("ix_applicants_current_stage", "applicants", ["current_stage"])

    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("role", _enum("user_role"), nullable=False, server_default="jury"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "otp_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("identifier", sa.String(length=255), nullable=False),
        sa.Column("code_hash", sa.String(length=64), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("identifier"),
    )
    op.create_index("ix_otp_sessions_expires_at", "otp_sessions", ["expires_at"])

    op.create_table(
        "applicant_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("applicant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token_hash"),
        sa.ForeignKeyConstraint(["applicant_id"], ["applicants.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_applicant_sessions_applicant_id", "applicant_sessions", ["applicant_id"])
    op.create_index("ix_applicant_sessions_expires_at", "applicant_sessions", ["expires_at"])

    op.create_table(
        "selection_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("applicant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("from_stage", sa.Integer(), nullable=False),
        sa.Column("decision", _enum("selection_decision"), nullable=False),
        sa.Column("next_stage", sa.Integer(), nullable=False),
        sa.Column("source", _enum("decision_source"), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("batch_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "applied_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("clock_timestamp()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["applicant_id"], ["applicants.id"], ondelete="RESTRICT"),
    )
    op.create_index(
        "ix_selection_records_applicant_applied",
        "selection_records",
        ["applicant_id", "applied_at"],
    )
    op.create_index("ix_selection_records_batch_id", "selection_records", ["batch_id"])

    op.create_table(
        "confirmation_codes",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("applicant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("code_hash", sa.String(length=64), nullable=False),
        sa.Column(
            "status",
            _enum("confirmation_status"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("applicant_id"),
        sa.UniqueConstraint("code_hash"),
        sa.ForeignKeyConstraint(["applicant_id"], ["applicants.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "payment_orders",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("order_id", sa.String(length=40), nullable=False),
        sa.Column("applicant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("amount", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("payment_type", sa.String(length=50), nullable=False),
        sa.Column("status", _enum("payment_status"), nullable=False, server_default="created"),
        sa.Column("gateway_tracking_id", sa.String(length=100), nullable=True),
        sa.Column("failure_message", sa.Text(), nullable=True),
        sa.Column("checkout_url", sa.Text(), nullable=True),
        sa.Column("retry_of", sa.String(length=40), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id"),
        sa.ForeignKeyConstraint(["applicant_id"], ["applicants.id"], ondelete="RESTRICT"),
    )
    op.create_index(
        "uq_payment_orders_active_per_type",
        "payment_orders",
        ["applicant_id", "payment_type"],
        unique=True,
        postgresql_where=sa.text("status IN ('created', 'pending')"),
    )
    op.create_index("ix_payment_orders_applicant_id", "payment_orders", ["applicant_id"])
    op.create_index("ix_payment_orders_status_created", "payment_orders", ["status", "created_at"])


def downgrade() -> None:
    """Drop all admissions tables and enum types."""
    op.drop_table("payment_orders")
    op.drop_table("confirmation_codes")
    op.drop_table("selection_records")
    op.drop_table("applicant_sessions")
    op.drop_table("otp_sessions")
    op.drop_table("users")
    op.drop_table("applicants")

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        _enum(name).drop(bind, checkfirst=True)
