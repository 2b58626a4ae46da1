"""SQLAlchemy models package."""

from eleva.models.base import TimestampMixin
from eleva.models.expert import Expert
from eleva.models.meeting import Meeting
from eleva.models.payment_transfer import PaymentTransfer, TransferStatus
from eleva.models.reservation import SlotReservation

__all__ = [
    "TimestampMixin",
    "Expert",
    "Meeting",
    "SlotReservation",
    "PaymentTransfer",
    "TransferStatus",
]
