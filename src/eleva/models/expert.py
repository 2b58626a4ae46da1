"""Expert model: the practitioner side of a booking."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from eleva.db.session import Base
from eleva.models.base import TimestampMixin, new_uuid


class Expert(Base, TimestampMixin):
    __tablename__ = "experts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    first_name: Mapped[str | None] = mapped_column(String(100))
    last_name: Mapped[str | None] = mapped_column(String(100))
    country: Mapped[str | None] = mapped_column(String(2))
    locale: Mapped[str | None] = mapped_column(String(10))
    schedule_timezone: Mapped[str] = mapped_column(String(50), default="UTC")
    stripe_connect_account_id: Mapped[str | None] = mapped_column(String(255))

    @property
    def display_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p) or "Expert"

    def __repr__(self) -> str:
        return f"<Expert {self.email!r}>"
