"""SlotReservation model: a held booking slot awaiting a Multibanco payment."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from eleva.db.session import Base
from eleva.models.base import TimestampMixin, UTCDateTime, new_uuid


class SlotReservation(Base, TimestampMixin):
    __tablename__ = "slot_reservations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    expert_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("experts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_name: Mapped[str] = mapped_column(String(255), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(default=60)
    guest_email: Mapped[str] = mapped_column(String(255), nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(255), index=True)

    gentle_reminder_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    urgent_reminder_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    expert: Mapped[Expert] = relationship(lazy="joined")  # noqa: F821

    def __repr__(self) -> str:
        return f"<SlotReservation {self.id!r} expires={self.expires_at!r}>"
