"""Reminder stages and their eligibility windows.

Each candidate moves Pending -> Eligible -> Sent per stage. A stage is Eligible
from its threshold until its window closes or the candidate's deadline passes,
and Sent once its marker column is set. A window must stay open for at least
one period of the job that sends it, or candidates fall between two runs.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta


class StageState(enum.StrEnum):
    PENDING = "pending"
    ELIGIBLE = "eligible"
    SENT = "sent"
    LAPSED = "lapsed"


@dataclass(frozen=True)
class ReminderStage:
    name: str
    marker: str
    # Offset of the window opening from the candidate's anchor timestamp
    opens_at: timedelta
    # Offset of the window closing; None means the candidate's deadline
    closes_at: timedelta | None
    description: str = ""

    def window(self, anchor: datetime, deadline: datetime) -> tuple[datetime, datetime]:
        start = anchor + self.opens_at
        end = anchor + self.closes_at if self.closes_at is not None else deadline
        return start, min(end, deadline)

    def state(
        self,
        *,
        anchor: datetime,
        deadline: datetime,
        sent_at: datetime | None,
        now: datetime,
    ) -> StageState:
        if sent_at is not None:
            return StageState.SENT
        start, end = self.window(anchor, deadline)
        if now < start:
            return StageState.PENDING
        if now >= end:
            return StageState.LAPSED
        return StageState.ELIGIBLE


# Appointment reminders are anchored on the start time
REMINDER_24H = ReminderStage(
    name="24hr",
    marker="reminder_24h_sent_at",
    opens_at=timedelta(hours=-24),
    closes_at=timedelta(0),
    description="24-hour appointment reminder",
)
REMINDER_1H = ReminderStage(
    name="1hr",
    marker="reminder_1h_sent_at",
    opens_at=timedelta(hours=-1),
    closes_at=timedelta(0),
    description="1-hour appointment reminder",
)

# Payment reminders are anchored on the reservation's creation, deadline is expiry
GENTLE_PAYMENT_REMINDER = ReminderStage(
    name="gentle",
    marker="gentle_reminder_sent_at",
    opens_at=timedelta(days=3),
    closes_at=timedelta(days=6),
    description="Gentle reminder (Day 3)",
)
URGENT_PAYMENT_REMINDER = ReminderStage(
    name="urgent",
    marker="urgent_reminder_sent_at",
    opens_at=timedelta(days=6),
    closes_at=None,
    description="Urgent final reminder (Day 6)",
)

APPOINTMENT_STAGES = {REMINDER_24H.name: REMINDER_24H, REMINDER_1H.name: REMINDER_1H}
PAYMENT_STAGES = (GENTLE_PAYMENT_REMINDER, URGENT_PAYMENT_REMINDER)
