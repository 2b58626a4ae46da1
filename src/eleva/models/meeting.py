"""Meeting model: a confirmed, paid appointment."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from eleva.db.session import Base
from eleva.models.base import TimestampMixin, UTCDateTime, new_uuid

PAYMENT_STATUS_SUCCEEDED = "succeeded"


class Meeting(Base, TimestampMixin):
    __tablename__ = "meetings"
    __table_args__ = (Index("ix_meetings_status_start", "payment_status", "start_time"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    expert_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("experts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_name: Mapped[str] = mapped_column(String(255), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(default=60)
    guest_email: Mapped[str] = mapped_column(String(255), nullable=False)
    guest_name: Mapped[str | None] = mapped_column(String(255))
    guest_locale: Mapped[str | None] = mapped_column(String(10))
    timezone: Mapped[str] = mapped_column(String(50), default="UTC")
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    meeting_url: Mapped[str | None] = mapped_column(String(500))
    payment_status: Mapped[str] = mapped_column(String(30), default="pending")

    # Reminder stage markers; set once the stage's notification went out
    reminder_24h_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    reminder_1h_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    expert: Mapped[Expert] = relationship(lazy="joined")  # noqa: F821

    def __repr__(self) -> str:
        return f"<Meeting {self.id!r} start={self.start_time!r}>"
