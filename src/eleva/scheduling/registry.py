"""Schedule registry: the declarative table of every recurring job."""

from __future__ import annotations

import enum
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime

from eleva.scheduling.cron import (
    cron_to_human,
    interval_to_human,
    is_interval,
    next_cron_fire,
    parse_interval,
    validate_cron_expression,
)


class Priority(enum.StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CadenceKind(enum.StrEnum):
    CRON = "cron"
    INTERVAL = "interval"


@dataclass(frozen=True)
class Cadence:
    """A cron expression or a fixed interval string."""

    kind: CadenceKind
    value: str

    @classmethod
    def parse(cls, text: str) -> Cadence:
        text = " ".join(text.split())
        if is_interval(text):
            parse_interval(text)
            return cls(CadenceKind.INTERVAL, text.replace(" ", ""))
        valid, err = validate_cron_expression(text)
        if not valid:
            raise ValueError(err)
        return cls(CadenceKind.CRON, text)

    @property
    def is_cron(self) -> bool:
        return self.kind is CadenceKind.CRON

    def next_fire(self, after: datetime) -> datetime:
        if self.is_cron:
            return next_cron_fire(self.value, after)
        return after + parse_interval(self.value)

    def describe(self) -> str:
        return cron_to_human(self.value) if self.is_cron else interval_to_human(self.value)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ScheduledJob:
    name: str
    endpoint: str
    cadence: Cadence
    retries: int = 3
    priority: Priority = Priority.MEDIUM
    description: str = ""

    def destination(self, base_url: str) -> str:
        return f"{base_url.rstrip('/')}{self.endpoint}"


def job(
    name: str,
    endpoint: str,
    cadence: str,
    *,
    retries: int = 3,
    priority: Priority | str = Priority.MEDIUM,
    description: str = "",
) -> ScheduledJob:
    """Build a ScheduledJob from plain values, parsing cadence and priority."""
    return ScheduledJob(
        name=name,
        endpoint=endpoint,
        cadence=Cadence.parse(cadence),
        retries=retries,
        priority=Priority(priority),
        description=description,
    )


class ScheduleRegistry:
    """Immutable, validated collection of ScheduledJobs keyed by name."""

    def __init__(self, jobs: Iterable[ScheduledJob]) -> None:
        jobs = tuple(jobs)
        by_name: dict[str, ScheduledJob] = {}
        endpoints: set[str] = set()
        for entry in jobs:
            if not entry.name:
                raise ValueError("Scheduled job name must not be empty")
            if entry.name in by_name:
                raise ValueError(f"Duplicate scheduled job name: {entry.name!r}")
            if not entry.endpoint.startswith("/"):
                raise ValueError(f"Endpoint for {entry.name!r} must be a path: {entry.endpoint!r}")
            if entry.endpoint in endpoints:
                raise ValueError(f"Endpoint {entry.endpoint!r} is registered twice")
            if entry.retries < 0:
                raise ValueError(f"Retries for {entry.name!r} must be >= 0")
            by_name[entry.name] = entry
            endpoints.add(entry.endpoint)
        self._jobs = jobs
        self._by_name = by_name

    @property
    def jobs(self) -> tuple[ScheduledJob, ...]:
        return self._jobs

    def __iter__(self) -> Iterator[ScheduledJob]:
        return iter(self._jobs)

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: str) -> ScheduledJob | None:
        return self._by_name.get(name)

    def by_endpoint(self, endpoint: str) -> ScheduledJob | None:
        for entry in self.jobs:
            if entry.endpoint == endpoint:
                return entry
        return None

    def names(self) -> list[str]:
        return [entry.name for entry in self.jobs]


def default_registry(retries: int = 3) -> ScheduleRegistry:
    """The production job table."""
    return ScheduleRegistry(
        [
            job(
                "appointmentReminders",
                "/api/cron/appointment-reminders",
                "0 9 * * *",
                retries=retries,
                priority=Priority.HIGH,
                description="24-hour appointment reminders for confirmed bookings",
            ),
            job(
                "appointmentReminders1Hr",
                "/api/cron/appointment-reminders-1hr",
                "*/15 * * * *",
                retries=retries,
                priority=Priority.HIGH,
                description="1-hour appointment reminders for upcoming sessions",
            ),
            job(
                "processExpertTransfers",
                "/api/cron/process-expert-transfers",
                "0 */2 * * *",
                retries=retries,
                priority=Priority.CRITICAL,
                description="Process pending expert payouts based on aging requirements",
            ),
            job(
                "processPendingPayouts",
                "/api/cron/process-pending-payouts",
                "0 6 * * *",
                retries=retries,
                priority=Priority.HIGH,
                description="Pay out completed transfers from expert Connect balances",
            ),
            job(
                "sendPaymentReminders",
                "/api/cron/send-payment-reminders",
                "0 */6 * * *",
                retries=retries,
                priority=Priority.HIGH,
                description="Staged Multibanco payment reminders (Day 3 gentle, Day 6 urgent)",
            ),
            job(
                "cleanupExpiredReservations",
                "/api/cron/cleanup-expired-reservations",
                "*/15 * * * *",
                retries=retries,
                priority=Priority.MEDIUM,
                description="Clean up expired slot reservations",
            ),
            job(
                "keepAlive",
                "/api/cron/keep-alive",
                "10m",
                retries=retries,
                priority=Priority.LOW,
                description="Keep the database connection warm",
            ),
        ]
    )
