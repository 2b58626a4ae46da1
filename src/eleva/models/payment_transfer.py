"""PaymentTransfer model, the authoritative record of an expert payout."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Boolean, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from eleva.db.session import Base
from eleva.models.base import TimestampMixin, UTCDateTime


class TransferStatus(enum.StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PAYOUT_PROCESSING = "payout_processing"
    PAID_OUT = "paid_out"


class PaymentTransfer(Base, TimestampMixin):
    __tablename__ = "payment_transfers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payment_intent_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    expert_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("experts.id"), nullable=False, index=True
    )
    expert_connect_account_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="eur")
    session_start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    scheduled_transfer_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    requires_approval: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[TransferStatus] = mapped_column(
        Enum(TransferStatus, values_callable=lambda e: [m.value for m in e]),
        default=TransferStatus.PENDING,
        nullable=False,
        index=True,
    )
    transfer_id: Mapped[str | None] = mapped_column(String(255))
    transferred_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    payout_id: Mapped[str | None] = mapped_column(String(255))
    stripe_error_code: Mapped[str | None] = mapped_column(String(100))
    stripe_error_message: Mapped[str | None] = mapped_column(Text)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    expert: Mapped[Expert] = relationship(lazy="joined")  # noqa: F821

    def __repr__(self) -> str:
        return f"<PaymentTransfer {self.id!r} status={self.status!r}>"
