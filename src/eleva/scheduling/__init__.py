"""Recurring job registry and scheduler reconciliation."""

from eleva.scheduling.qstash import QStashClient, RemoteSchedule, ScheduleRequest
from eleva.scheduling.registry import (
    Cadence,
    Priority,
    ScheduledJob,
    ScheduleRegistry,
    default_registry,
)
from eleva.scheduling.sync import ScheduleSynchronizer, SyncPlan, SyncReport

__all__ = [
    "Cadence",
    "Priority",
    "QStashClient",
    "RemoteSchedule",
    "ScheduleRegistry",
    "ScheduleRequest",
    "ScheduleSynchronizer",
    "ScheduledJob",
    "SyncPlan",
    "SyncReport",
    "default_registry",
]
