"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TRANSFER_STATUSES = (
    "pending",
    "approved",
    "processing",
    "completed",
    "failed",
    "payout_processing",
    "paid_out",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "experts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("country", sa.String(2), nullable=True),
        sa.Column("locale", sa.String(10), nullable=True),
        sa.Column("schedule_timezone", sa.String(50), nullable=False, server_default="UTC"),
        sa.Column("stripe_connect_account_id", sa.String(255), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_experts_email", "experts", ["email"])

    op.create_table(
        "meetings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("expert_id", sa.String(64), sa.ForeignKey("experts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event_name", sa.String(255), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("guest_email", sa.String(255), nullable=False),
        sa.Column("guest_name", sa.String(255), nullable=True),
        sa.Column("guest_locale", sa.String(10), nullable=True),
        sa.Column("timezone", sa.String(50), nullable=False, server_default="UTC"),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("meeting_url", sa.String(500), nullable=True),
        sa.Column("payment_status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column("reminder_24h_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reminder_1h_sent_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_meetings_expert_id", "meetings", ["expert_id"])
    op.create_index("ix_meetings_status_start", "meetings", ["payment_status", "start_time"])

    op.create_table(
        "slot_reservations",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("expert_id", sa.String(64), sa.ForeignKey("experts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event_name", sa.String(255), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("guest_email", sa.String(255), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("stripe_payment_intent_id", sa.String(255), nullable=True),
        sa.Column("gentle_reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("urgent_reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_slot_reservations_expert_id", "slot_reservations", ["expert_id"])
    op.create_index("ix_slot_reservations_expires_at", "slot_reservations", ["expires_at"])
    op.create_index(
        "ix_slot_reservations_stripe_payment_intent_id", "slot_reservations", ["stripe_payment_intent_id"]
    )

    op.create_table(
        "payment_transfers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("payment_intent_id", sa.String(255), nullable=False),
        sa.Column("expert_id", sa.String(64), sa.ForeignKey("experts.id"), nullable=False),
        sa.Column("expert_connect_account_id", sa.String(255), nullable=False),
        sa.Column("event_id", sa.String(64), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="eur"),
        sa.Column("session_start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_transfer_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("requires_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "status",
            sa.Enum(*TRANSFER_STATUSES, name="transferstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("transfer_id", sa.String(255), nullable=True),
        sa.Column("transferred_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payout_id", sa.String(255), nullable=True),
        sa.Column("stripe_error_code", sa.String(100), nullable=True),
        sa.Column("stripe_error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("payment_intent_id"),
    )
    op.create_index("ix_payment_transfers_expert_id", "payment_transfers", ["expert_id"])
    op.create_index("ix_payment_transfers_status", "payment_transfers", ["status"])


def downgrade() -> None:
    op.drop_table("payment_transfers")
    sa.Enum(name="transferstatus").drop(op.get_bind(), checkfirst=True)
    op.drop_table("slot_reservations")
    op.drop_table("meetings")
    op.drop_table("experts")
